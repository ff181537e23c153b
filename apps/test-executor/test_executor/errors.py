"""Error types that carry the YAML path of the value that caused them."""

from __future__ import annotations

from typing import Iterable


class ScenarioError(Exception):
    """Base class for every error raised while loading or running scenarios."""


class PathError(ScenarioError):
    """An error annotated with a dotted path such as ``.steps[0].request.body``."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def with_path(self, path: str) -> "PathError":
        self.path = join_path(path, self.path)
        return self

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


class LoadError(PathError):
    """Scenario or config file could not be read or validated."""


class CompileError(PathError):
    """Template, assertion or proto definition could not be compiled."""


class UnknownReferenceError(PathError):
    """A variable, key or index could not be resolved."""


class RequestError(PathError):
    """The remote call failed at the transport level."""


class AssertionFailure(PathError):
    """The actual value did not satisfy the expectation."""


class MockViolation(PathError):
    """A mock server received a request it could not serve."""


class CancelledError(PathError):
    """The run was cancelled or hit its deadline."""


class MultiPathError(ScenarioError):
    """A set of errors collected without stopping at the first one."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(str(self))

    def with_path(self, path: str) -> "MultiPathError":
        self.errors = [with_path(err, path) for err in self.errors]
        return self

    def __str__(self) -> str:
        lines = [f"{len(self.errors)} errors occurred:"]
        lines.extend(f"\t* {err}" for err in self.errors)
        return "\n".join(lines)


def join_path(prefix: str, path: str) -> str:
    """Join two path fragments, inserting a ``.`` before bare keys."""

    if not prefix:
        return path
    if not prefix.startswith((".", "[")):
        prefix = f".{prefix}"
    if path and not path.startswith((".", "[")):
        path = f".{path}"
    return prefix + path


def with_path(err: BaseException, path: str) -> BaseException:
    """Prepend ``path`` to the path of ``err``, wrapping plain exceptions."""

    if isinstance(err, (PathError, MultiPathError)):
        return err.with_path(path)
    wrapped = PathError(str(err), join_path(path, ""))
    wrapped.__cause__ = err
    return wrapped


def wrap(err: BaseException, message: str) -> BaseException:
    """Prefix the message of ``err`` while keeping its kind and path."""

    if isinstance(err, PathError):
        err.message = f"{message}: {err.message}"
        return err
    if isinstance(err, MultiPathError):
        wrapped = PathError(f"{message}: {err}")
        wrapped.__cause__ = err
        return wrapped
    wrapped = PathError(f"{message}: {err}")
    wrapped.__cause__ = err
    return wrapped


def error_path(path: str, message: str, kind: type[PathError] = PathError) -> PathError:
    return kind(message, join_path(path, ""))


def combine(errors: list[BaseException]) -> BaseException | None:
    """Return None, the single error, or a :class:`MultiPathError`."""

    if not errors:
        return None
    if len(errors) == 1:
        return errors[0]
    return MultiPathError(errors)
