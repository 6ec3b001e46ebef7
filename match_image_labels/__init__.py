"""A command-line tool that names image files after matching data source labels using vision language models."""

from .match_image_labels import decide, process_batch, process_image
from .matcher import match_label, parse_response

__all__ = ["decide", "match_label", "parse_response", "process_batch", "process_image"]
