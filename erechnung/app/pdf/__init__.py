from .objects import Name, ObjectId, PdfString, Reference, Stream
from .document import PdfDocument

__all__ = [
    "Name",
    "ObjectId",
    "PdfDocument",
    "PdfString",
    "Reference",
    "Stream",
]
