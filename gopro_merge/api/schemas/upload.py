from pydantic import BaseModel

from gopro_merge.services.grouping import SequenceGroup


class ChapterResponse(BaseModel):
    chapter: int
    original_name: str
    size_bytes: int


class GroupResponse(BaseModel):
    group_id: str
    encoding: str
    sequence: int
    chapters: list[ChapterResponse]
    chapter_count: int
    total_size: int

    @classmethod
    def from_group(cls, group: SequenceGroup) -> "GroupResponse":
        return cls(
            group_id=group.group_id,
            encoding=group.encoding.value,
            sequence=group.sequence_number,
            chapters=[
                ChapterResponse(
                    chapter=chapter.number,
                    original_name=chapter.descriptor.original_name,
                    size_bytes=chapter.descriptor.size_bytes,
                )
                for chapter in group.chapters
            ],
            chapter_count=len(group.chapters),
            total_size=group.total_size,
        )


class UploadResponse(BaseModel):
    session_id: str
    groups: list[GroupResponse]
