"""Receipt photo scanning: model call, JSON recovery and the edit-before-save flow."""

from .extraction import (
    OpenAIScanner,
    OpenRouterScanner,
    ReceiptScanner,
    ScannedItem,
    ScannedReceipt,
    build_data_url,
    build_scanner,
    extract_json_object,
)
from .workflow import CAPTURE, EDITING, PROCESSING, ScanWorkflow, StagedReceipt

__all__ = [
    "CAPTURE",
    "EDITING",
    "PROCESSING",
    "OpenAIScanner",
    "OpenRouterScanner",
    "ReceiptScanner",
    "ScanWorkflow",
    "ScannedItem",
    "ScannedReceipt",
    "StagedReceipt",
    "build_data_url",
    "build_scanner",
    "extract_json_object",
]
