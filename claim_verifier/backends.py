"""
Text-recognition backends.

Local:
  TesseractBackend     always available once the tesseract binary is found;
                       returns text plus a mean word confidence.

Remote (optional, best-effort):
  OcrSpaceBackend      OCR.space HTTP API
  OpenAIVisionBackend  vision model asked to transcribe the screenshot

Remote backends never raise: no credentials, network trouble or an error
payload all come back as None, and the orchestrator falls back to local OCR.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import pytesseract
from openai import OpenAI
from PIL import Image

from .config import Settings
from .exceptions import RecognitionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OcrOutput:
    text: str
    confidence: float  # 0-100


class LocalBackend(Protocol):
    def initialize(self) -> None: ...

    def recognize(self, image_bytes: bytes) -> OcrOutput: ...


class RemoteBackend(Protocol):
    name: str

    def recognize(self, image_bytes: bytes) -> Optional[str]: ...


# ─── Local: Tesseract ───────────────────────────────────────────────


class TesseractBackend:
    """Local OCR via pytesseract, tuned for sparse game UI text."""

    def __init__(
        self,
        language: str = "eng",
        char_whitelist: str = "",
        page_seg_mode: int = 11,
    ):
        self.language = language
        options = [f"--psm {page_seg_mode}"]
        if char_whitelist:
            options.append(f"-c tessedit_char_whitelist={char_whitelist}")
        self.config = " ".join(options)

    def initialize(self) -> None:
        """Locate the tesseract binary once; fail loudly if it is missing."""
        try:
            version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as exc:
            raise RecognitionError(
                "Tesseract binary not found; install tesseract-ocr",
                details={"language": self.language},
            ) from exc
        logger.info("Tesseract %s ready (lang=%s, config=%r)", version, self.language, self.config)

    def recognize(self, image_bytes: bytes) -> OcrOutput:
        with Image.open(io.BytesIO(image_bytes)) as img:
            data = pytesseract.image_to_data(
                img,
                lang=self.language,
                config=self.config,
                output_type=pytesseract.Output.DICT,
            )
        return collect_words(data)


def collect_words(data: dict) -> OcrOutput:
    """Rebuild line text and mean word confidence from image_to_data output."""
    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []

    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        if not word:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
        conf = float(data["conf"][i])
        if conf >= 0:
            confidences.append(conf)

    text = "\n".join(" ".join(words) for words in lines.values())
    confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return OcrOutput(text=text, confidence=confidence)


# ─── Remote: OCR.space ──────────────────────────────────────────────


class OcrSpaceBackend:
    """OCR.space parse/image endpoint."""

    name = "ocrspace"

    def __init__(
        self,
        api_key: str,
        endpoint: str = "https://api.ocr.space/parse/image",
        language: str = "eng",
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.language = language
        self.timeout = timeout
        self._transport = transport

    def recognize(self, image_bytes: bytes) -> Optional[str]:
        headers = {"apikey": self.api_key}
        data = {"language": self.language, "isOverlayRequired": "false", "OCREngine": "2"}
        files = {"file": ("screenshot.png", image_bytes, "application/octet-stream")}

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(self.endpoint, headers=headers, data=data, files=files)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            logger.warning("OCR.space request failed: %s", exc)
            return None
        except ValueError:
            logger.warning("OCR.space returned a non-JSON response")
            return None

        if payload.get("IsErroredOnProcessing"):
            logger.warning(
                "OCR.space reported an error: %s",
                payload.get("ErrorMessage") or payload.get("ErrorMessageText"),
            )
            return None

        results = payload.get("ParsedResults") or []
        combined = "\n".join(filter(None, (item.get("ParsedText", "") for item in results if item)))
        return combined.strip() or None


# ─── Remote: OpenAI vision ──────────────────────────────────────────

TRANSCRIBE_PROMPT = """\
You are an OCR engine for video game screenshots.
Transcribe ALL visible text in the image exactly as written, one UI element
per line. Do not translate, summarize, correct, or add anything.
If there is no readable text, return an empty response.
"""


def _guess_mime(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


class OpenAIVisionBackend:
    """Vision model used as a high-accuracy transcriber."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-5", timeout: float = 20.0):
        self.model = model
        self._client = OpenAI(api_key=api_key, timeout=timeout)

    def recognize(self, image_bytes: bytes) -> Optional[str]:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        data_url = f"data:{_guess_mime(image_bytes)};base64,{encoded}"

        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": TRANSCRIBE_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": "Transcribe this screenshot:"},
                            {"type": "image_url", "image_url": {"url": data_url}},
                        ],
                    },
                ],
            )
        except Exception as e:
            logger.error("OpenAI transcription failed: %s", e)
            return None

        content = response.choices[0].message.content
        if not content:
            logger.warning("OpenAI returned empty content")
            return None
        return content.strip() or None


# ─── Factories ──────────────────────────────────────────────────────


def build_local_backend(settings: Settings) -> TesseractBackend:
    return TesseractBackend(
        language=settings.ocr_language,
        char_whitelist=settings.ocr_char_whitelist,
        page_seg_mode=settings.ocr_page_seg_mode,
    )


def build_remote_backend(settings: Settings) -> Optional[RemoteBackend]:
    """The configured remote backend, or None (missing provider or credentials)."""
    if settings.remote_provider == "ocrspace":
        if not settings.ocr_space_api_key:
            logger.info("No OCR_SPACE_API_KEY set; remote OCR disabled")
            return None
        return OcrSpaceBackend(
            settings.ocr_space_api_key,
            endpoint=settings.ocr_space_endpoint,
            language=settings.ocr_language,
            timeout=settings.remote_timeout,
        )
    if settings.remote_provider == "openai":
        if not settings.openai_api_key:
            logger.info("No OPENAI_API_KEY set; remote OCR disabled")
            return None
        return OpenAIVisionBackend(
            settings.openai_api_key, model=settings.openai_model, timeout=settings.remote_timeout
        )
    return None
