from .concatenator import FFmpegConcatenator, FFmpegError
from .filenames import ParsedName, parse_filename
from .grouping import FileDescriptor, SequenceGroup, group_files
from .notifier import ProgressNotifier, RedisEventListener, notifier
from .storage import StorageLayout

__all__ = [
    "FFmpegConcatenator",
    "FFmpegError",
    "ParsedName",
    "parse_filename",
    "FileDescriptor",
    "SequenceGroup",
    "group_files",
    "ProgressNotifier",
    "RedisEventListener",
    "notifier",
    "StorageLayout",
]
