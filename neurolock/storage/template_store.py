"""
Template persistence

One binary file per user under the template directory. The record layout is
explicit, fixed-width and little-endian, independent of the host:

    version      u32
    username     u32 length + UTF-8 bytes (1..64)
    task         i32
    created_at   i64  epoch seconds
    last_used    i64  epoch seconds
    features     u64 count + count * f32
    digest       u64 length + bytes
    salt         u64 length + bytes

Saves go to a temporary file in the same directory and are renamed into
place, so readers only ever see a complete old or a complete new record.
Loads check every length field against its bound before reading the payload.
"""

import fcntl
import logging
import os
import struct
import tempfile
from contextlib import contextmanager
from typing import Iterator, List

import numpy as np

from ..core.config import (TEMPLATE_DIR, TEMPLATE_EXTENSION, LOCK_EXTENSION,
                           TEMPLATE_VERSION, MAX_USERNAME_BYTES, MAX_FEATURES,
                           MAX_DIGEST_BYTES, MAX_SALT_BYTES)
from ..core.data_types import (FeatureVector, HashRecord, MentalTask, Template,
                               validate_username)
from ..core.errors import IntegrityError, TemplateIOError, ValidationError
from ..core.secure import wipe
from ..security.hashing import HashPrimitive, verify_seal

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_META = struct.Struct("<iqq")
_FLOAT = np.dtype("<f4")

MAX_RECORD_BYTES = (_U32.size + _U32.size + MAX_USERNAME_BYTES + _META.size
                    + _U64.size + MAX_FEATURES * _FLOAT.itemsize
                    + _U64.size + MAX_DIGEST_BYTES + _U64.size + MAX_SALT_BYTES)


def encode_template(template: Template) -> bytearray:
    """Serialize a template into the versioned wire format"""
    username = validate_username(template.username).encode("utf-8")
    n_features = len(template.features)
    if not 0 < n_features <= MAX_FEATURES:
        raise ValidationError(f"Feature count {n_features} outside 1..{MAX_FEATURES}")
    if not 0 < len(template.seal.digest) <= MAX_DIGEST_BYTES:
        raise ValidationError(f"Digest length {len(template.seal.digest)} outside 1..{MAX_DIGEST_BYTES}")
    if not 0 < len(template.seal.salt) <= MAX_SALT_BYTES:
        raise ValidationError(f"Salt length {len(template.seal.salt)} outside 1..{MAX_SALT_BYTES}")

    buf = bytearray()
    buf += _U32.pack(template.version)
    buf += _U32.pack(len(username))
    buf += username
    buf += _META.pack(int(template.task), int(template.created_at), int(template.last_used))
    buf += _U64.pack(n_features)
    buf += np.asarray(template.features.values, dtype=_FLOAT).tobytes()
    buf += _U64.pack(len(template.seal.digest))
    buf += template.seal.digest
    buf += _U64.pack(len(template.seal.salt))
    buf += template.seal.salt
    return buf


class _RecordReader:
    """Bounds-checked cursor over an encoded record"""

    def __init__(self, buf: bytearray):
        self.buf = buf
        self.offset = 0

    def take(self, n: int, what: str) -> bytearray:
        end = self.offset + n
        if end > len(self.buf):
            raise TemplateIOError(
                f"Truncated template: {what} needs {n} bytes at offset {self.offset}, "
                f"only {len(self.buf) - self.offset} left")
        chunk = self.buf[self.offset:end]
        self.offset = end
        return chunk

    def unpack(self, fmt: struct.Struct, what: str):
        return fmt.unpack(self.take(fmt.size, what))

    def length(self, fmt: struct.Struct, what: str, lower: int, upper: int) -> int:
        (value,) = self.unpack(fmt, f"{what} length")
        if not lower <= value <= upper:
            raise TemplateIOError(f"Template {what} length {value} outside {lower}..{upper}")
        return value


def decode_template(buf: bytearray) -> Template:
    """
    Parse a record produced by encode_template

    Raises:
        TemplateIOError: Unsupported version, bad length field,
            unknown task, truncated data or trailing garbage
    """
    reader = _RecordReader(buf)

    (version,) = reader.unpack(_U32, "version")
    if version != TEMPLATE_VERSION:
        raise TemplateIOError(f"Unsupported template version {version}")

    name_len = reader.length(_U32, "username", 1, MAX_USERNAME_BYTES)
    try:
        username = validate_username(reader.take(name_len, "username").decode("utf-8"))
    except (UnicodeDecodeError, ValidationError) as e:
        raise TemplateIOError(f"Malformed username in template: {e}") from e

    task_value, created_at, last_used = reader.unpack(_META, "metadata")
    try:
        task = MentalTask(task_value)
    except ValueError:
        raise TemplateIOError(f"Unknown task label {task_value} in template")

    sensitive = []
    try:
        n_features = reader.length(_U64, "feature", 1, MAX_FEATURES)
        raw_features = reader.take(n_features * _FLOAT.itemsize, "features")
        sensitive.append(raw_features)
        values = np.frombuffer(raw_features, dtype=_FLOAT).astype(np.float32)
        sensitive.append(values)
        if not np.all(np.isfinite(values)):
            raise TemplateIOError("Template contains non-finite feature values")

        digest_len = reader.length(_U64, "digest", 1, MAX_DIGEST_BYTES)
        digest = reader.take(digest_len, "digest")
        sensitive.append(digest)
        salt_len = reader.length(_U64, "salt", 1, MAX_SALT_BYTES)
        salt = reader.take(salt_len, "salt")
        sensitive.append(salt)

        if reader.offset != len(buf):
            raise TemplateIOError(f"{len(buf) - reader.offset} trailing bytes after template record")
    except BaseException:
        for buffer in sensitive:
            wipe(buffer)
        raise
    wipe(raw_features)

    return Template(
        username=username,
        features=FeatureVector(values, task=task, timestamp=float(created_at)),
        seal=HashRecord(digest=digest, salt=salt),
        task=task,
        created_at=created_at,
        last_used=last_used,
        version=version,
    )


class TemplateStore:
    """
    Directory of per-user template files

    Individual operations are atomic on their own. Callers that need a
    read-modify-write sequence (enrol, authenticate with last-used update,
    delete) hold ``locked(username)`` around it.
    """

    def __init__(self, template_dir: str = TEMPLATE_DIR,
                 primitive=HashPrimitive.SHA256):
        self.template_dir = template_dir
        self.primitive = primitive

    def path_for(self, username: str) -> str:
        validate_username(username)
        return os.path.join(self.template_dir, f"{username}{TEMPLATE_EXTENSION}")

    def _lock_path(self, username: str) -> str:
        validate_username(username)
        return os.path.join(self.template_dir, f"{username}{LOCK_EXTENSION}")

    def _ensure_dir(self) -> None:
        try:
            os.makedirs(self.template_dir, exist_ok=True)
        except OSError as e:
            raise TemplateIOError(f"Failed to create template directory {self.template_dir}: {e}") from e

    @contextmanager
    def locked(self, username: str) -> Iterator[None]:
        """Exclusive advisory lock for one user's template, across processes"""
        self._ensure_dir()
        lock_path = self._lock_path(username)
        try:
            fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise TemplateIOError(f"Failed to open lock file {lock_path}: {e}") from e
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            logging.debug(f"Acquired template lock for {username}")
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def exists(self, username: str) -> bool:
        return os.path.isfile(self.path_for(username))

    def save(self, template: Template) -> str:
        """
        Write a template atomically

        Returns:
            str: Final path of the template file

        Raises:
            TemplateIOError: If the directory or file cannot be written
        """
        filepath = self.path_for(template.username)
        logging.info(f"Saving template to: {filepath}")

        self._ensure_dir()
        payload = encode_template(template)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=f".{template.username}.", suffix=".tmp",
                                            dir=self.template_dir)
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, filepath)
            tmp_path = None
        except OSError as e:
            raise TemplateIOError(f"Failed to write template {filepath}: {e}") from e
        finally:
            wipe(payload)
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        logging.info("Template saved successfully")
        return filepath

    def load(self, username: str, verify: bool = True) -> Template:
        """
        Read and decode a user's template

        Args:
            username: Enrolled user
            verify: Recompute the seal over the loaded vector

        Raises:
            TemplateIOError: Missing, unreadable or malformed file
            IntegrityError: The vector does not match its seal
        """
        filepath = self.path_for(username)
        logging.info(f"Loading template from: {filepath}")

        try:
            with open(filepath, "rb") as fh:
                buf = bytearray(fh.read(MAX_RECORD_BYTES + 1))
        except FileNotFoundError as e:
            raise TemplateIOError(f"No template for user '{username}'") from e
        except OSError as e:
            raise TemplateIOError(f"Failed to read template {filepath}: {e}") from e

        try:
            if len(buf) > MAX_RECORD_BYTES:
                raise TemplateIOError(f"Template file exceeds {MAX_RECORD_BYTES} bytes")
            template = decode_template(buf)
        finally:
            wipe(buf)

        if template.username != username:
            template.wipe()
            raise TemplateIOError(
                f"Template file for '{username}' belongs to '{template.username}'")

        if verify and not verify_seal(template.features, template.seal, self.primitive):
            template.wipe()
            raise IntegrityError(f"Template for '{username}' failed its integrity check")

        logging.info("Template loaded successfully")
        return template

    def delete(self, username: str) -> None:
        filepath = self.path_for(username)
        try:
            os.remove(filepath)
        except FileNotFoundError as e:
            raise TemplateIOError(f"No template for user '{username}'") from e
        except OSError as e:
            raise TemplateIOError(f"Failed to delete template {filepath}: {e}") from e
        logging.info(f"Template deleted: {filepath}")

    def list_users(self) -> List[str]:
        """Usernames with a template file, sorted"""
        if not os.path.isdir(self.template_dir):
            return []
        users = []
        for name in sorted(os.listdir(self.template_dir)):
            if name.endswith(TEMPLATE_EXTENSION) and not name.startswith("."):
                users.append(name[: -len(TEMPLATE_EXTENSION)])
        return users
