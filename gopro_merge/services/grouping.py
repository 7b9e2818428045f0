"""
Grouping of uploaded chapter files into recording sequences.

A GoPro splits one recording into chapters that share an encoding letter and a
four digit sequence number. Only the full resolution ``.MP4`` chapters take part
in the merge; ``.LRV`` proxies and ``.THM`` thumbnails are ignored here.
"""

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field

from gopro_merge.core.exceptions import DuplicateChapterError

from .filenames import Encoding, parse_filename


class FileDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_name: str
    stored_path: str
    size_bytes: int = Field(ge=0)


class Chapter(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    descriptor: FileDescriptor


class SequenceGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    encoding: Encoding
    sequence_number: int
    chapters: tuple[Chapter, ...]

    @property
    def input_paths(self) -> list[str]:
        return [chapter.descriptor.stored_path for chapter in self.chapters]

    @property
    def total_size(self) -> int:
        return sum(chapter.descriptor.size_bytes for chapter in self.chapters)


def make_group_id(encoding: Encoding, sequence_number: int) -> str:
    return f"G{encoding.value}{sequence_number:04d}"


def group_files(files: Iterable[FileDescriptor]) -> list[SequenceGroup]:
    """
    Bucket video chapters by (encoding, sequence) and order each bucket by chapter.

    Groups come back in the order their first chapter appears in ``files``.
    Raises DuplicateChapterError when two files claim the same chapter of a sequence.
    """
    buckets: dict[tuple[Encoding, int], dict[int, FileDescriptor]] = {}

    for descriptor in files:
        parsed = parse_filename(descriptor.original_name)
        if parsed is None or not parsed.is_video:
            continue

        key = (parsed.encoding, parsed.sequence_number)
        chapters = buckets.setdefault(key, {})
        if parsed.chapter_number in chapters:
            raise DuplicateChapterError(make_group_id(*key), parsed.chapter_number)
        chapters[parsed.chapter_number] = descriptor

    return [
        SequenceGroup(
            group_id=make_group_id(encoding, sequence_number),
            encoding=encoding,
            sequence_number=sequence_number,
            chapters=tuple(
                Chapter(number=number, descriptor=chapters[number]) for number in sorted(chapters)
            ),
        )
        for (encoding, sequence_number), chapters in buckets.items()
    ]
