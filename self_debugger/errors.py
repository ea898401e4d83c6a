"""Exceptions raised by the self-debugger engine."""


class DebuggerError(Exception):
    """Base class for all self-debugger failures."""


class RuleSchemaError(DebuggerError):
    """A rule definition does not match the rule schema."""


class LockContentionError(DebuggerError):
    """A branch lock is held by another live process."""


class LedgerLockTimeout(DebuggerError):
    """The append lock on a JSONL file could not be taken in time."""


class GitError(DebuggerError):
    """A git command failed."""


class PushError(GitError):
    """Pushing a branch failed. The local commit is left intact."""


class SourceRepoNotFound(DebuggerError):
    """No git repository with a plugins/ directory was found."""


class InvalidSessionId(DebuggerError):
    """Session id is empty, too long or has characters outside [A-Za-z0-9-]."""


class IssueNotFound(DebuggerError):
    """No issue matches the given id or id prefix."""


class ScanAborted(DebuggerError):
    """A scan cycle was cut short after the shutdown grace period ran out."""
