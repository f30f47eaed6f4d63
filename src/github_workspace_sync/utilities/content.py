import base64


def decode_content(content: str) -> str:
    """Decode base64 content from the GitHub contents API. GitHub wraps the payload with newlines."""
    return base64.b64decode(content.replace("\n", "")).decode("utf-8")


def encode_content(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")
