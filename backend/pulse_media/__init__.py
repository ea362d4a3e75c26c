from .classifier import AttachmentClassifier
from .ingestion import AttachmentIngestor, IngestionResult, compare_pair
from .normalizer import ImageNormalizer, ImageUnreadable, NormalizedImage
from .ocr import OCRFailure, RecognizedText, TextExtractor

__all__ = [
    "AttachmentClassifier",
    "AttachmentIngestor",
    "ImageNormalizer",
    "ImageUnreadable",
    "IngestionResult",
    "NormalizedImage",
    "OCRFailure",
    "RecognizedText",
    "TextExtractor",
    "compare_pair",
]
