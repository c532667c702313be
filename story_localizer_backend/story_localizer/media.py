import io, os, logging, wave
from PIL import Image

logger = logging.getLogger(__name__)

# ElevenLabs mp3_22050_32 is 32 kbit/s
MP3_BYTES_PER_SECOND = 4000


def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def to_png(image_data: bytes) -> bytes:
    """Normalize provider output (WebP, JPEG, RGBA PNG) to an RGB PNG."""
    with Image.open(io.BytesIO(image_data)) as pil_img:
        if pil_img.format == "PNG" and pil_img.mode == "RGB":
            return image_data
        logger.info(f"Converting {pil_img.format} ({pil_img.mode}) image to PNG")
        if pil_img.mode in ("RGBA", "LA"):
            # Flatten transparency onto a white background
            background = Image.new("RGB", pil_img.size, (255, 255, 255))
            if pil_img.mode == "LA":
                pil_img = pil_img.convert("RGBA")
            background.paste(pil_img, mask=pil_img.split()[-1])
            pil_img = background
        elif pil_img.mode != "RGB":
            pil_img = pil_img.convert("RGB")
        png_buffer = io.BytesIO()
        pil_img.save(png_buffer, format="PNG")
        return png_buffer.getvalue()


def audio_duration(audio: bytes, text: str, words_per_minute: int = 150) -> float:
    """Measured duration for WAV, estimated from size and word count for MP3."""
    if audio[:4] == b"RIFF":
        with wave.open(io.BytesIO(audio)) as w:
            return round(w.getnframes() / float(w.getframerate()), 2)
    by_size = len(audio) / MP3_BYTES_PER_SECOND
    by_words = len((text or "").split()) / words_per_minute * 60
    if not by_words:
        return round(by_size, 2)
    return round((by_size + by_words) / 2, 2)
