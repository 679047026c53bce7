from pathlib import Path
from uuid import uuid4

from PIL import Image
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.errors import AppError
from app.utils import utcnow

IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "webp"}
DOCUMENT_EXTENSIONS = IMAGE_EXTENSIONS | {"pdf"}


class FileService:
    @staticmethod
    def _extension(filename):
        return filename.rsplit(".", 1)[1].lower() if "." in filename else ""

    @staticmethod
    def _verify_image(storage):
        # Verify actual image bytes to avoid extension spoofing.
        try:
            img = Image.open(storage.stream)
            img.verify()
        except Exception as exc:
            raise AppError("Invalid image file.", 400) from exc
        finally:
            storage.stream.seek(0)

    @staticmethod
    def _verify_pdf(storage):
        head = storage.stream.read(5)
        storage.stream.seek(0)
        if head != b"%PDF-":
            raise AppError("Invalid PDF file.", 400)

    @classmethod
    def save_document(cls, storage: FileStorage, upload_root: str):
        if not storage or not storage.filename:
            raise AppError("A file is required.", 400)

        filename = secure_filename(storage.filename)
        extension = cls._extension(filename) if filename else ""
        if extension not in DOCUMENT_EXTENSIONS:
            raise AppError("Unsupported file format.", 400)

        if extension == "pdf":
            cls._verify_pdf(storage)
        else:
            cls._verify_image(storage)

        dated_folder = utcnow().strftime("%Y/%m/%d")
        folder = Path(upload_root) / dated_folder
        folder.mkdir(parents=True, exist_ok=True)

        unique_filename = f"{uuid4().hex}.{extension}"
        storage.save(folder / unique_filename)

        return str(Path(upload_root).name + "/" + dated_folder + "/" + unique_filename), filename
