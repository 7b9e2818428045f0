import enum
import re

from pydantic import BaseModel, ConfigDict, Field

GOPRO_FILENAME = re.compile(r"G([HX])(\d{2})(\d{4})\.(MP4|LRV|THM)", re.IGNORECASE | re.ASCII)

ACCEPTED_EXTENSIONS = {".mp4", ".lrv", ".thm"}


class Encoding(str, enum.Enum):
    H = "H"
    X = "X"


class Extension(str, enum.Enum):
    VIDEO = "MP4"
    LOW_RES_PROXY = "LRV"
    THUMBNAIL = "THM"


class ParsedName(BaseModel):
    """Fields encoded in a GoPro chapter filename such as ``GX020150.MP4``."""

    model_config = ConfigDict(frozen=True)

    encoding: Encoding
    chapter_number: int = Field(ge=1, le=99)
    sequence_number: int = Field(ge=0, le=9999)
    extension: Extension

    @property
    def filename(self) -> str:
        return (
            f"G{self.encoding.value}{self.chapter_number:02d}"
            f"{self.sequence_number:04d}.{self.extension.value}"
        )

    @property
    def is_video(self) -> bool:
        return self.extension is Extension.VIDEO


def parse_filename(name: str) -> ParsedName | None:
    """Parse a GoPro chapter filename. Returns None for anything else."""
    if not isinstance(name, str):
        return None

    match = GOPRO_FILENAME.fullmatch(name)
    if match is None:
        return None

    encoding, chapter, sequence, extension = match.groups()
    chapter_number = int(chapter)
    if chapter_number < 1:
        return None

    return ParsedName(
        encoding=Encoding(encoding.upper()),
        chapter_number=chapter_number,
        sequence_number=int(sequence),
        extension=Extension(extension.upper()),
    )
