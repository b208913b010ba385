"""
Input/Output Manager
Handles saving and loading an EventBuffer to event files.

Formats:
    BINARY  little-endian; u32 magic 0xFEBF, u32 version 1, then per event
            f32 posX, posY, posZ, radius, value. Size = 20 * n + 8 bytes.
    TEXT    UTF-8 lines; '#' comments, a mandatory 'Number of events: N'
            directive, then one 'posX posY posZ radius value' line per event.
    HDF5    datasets 'positions' (n, 3), 'radii' (n,), 'values' (n,) with
            'magic' and 'version' file attributes.

Reading sniffs the format (binary magic, then HDF5 signature, then text).
Every failure is reported as False and leaves the buffer untouched: data is
parsed completely before the buffer is resized and filled.

Radii are written and read in the buffer's stored form (reciprocals), so a
read after a write restores the radius column bit for bit and converting a
file never changes its radii.
"""
from __future__ import annotations

import logging
import os
import struct
from enum import StrEnum
from typing import Optional, Union, TYPE_CHECKING

import h5py
import numpy as np

from spatialevents.config import PRODUCER_VERSION

if TYPE_CHECKING:
    import numpy.typing as npt
    from spatialevents.model.buffer import EventBuffer

logger = logging.getLogger(__name__)

MAGIC = 0xFEBF
VERSION = 1
HEADER_FMT = "<II"  # magic (I), version (I)
HEADER_SIZE = struct.calcsize(HEADER_FMT)
FIELDS_PER_EVENT = 5
RECORD_SIZE = FIELDS_PER_EVENT * np.dtype("<f4").itemsize
COUNT_DIRECTIVE = "Number of events:"

PathLike = Union[str, "os.PathLike[str]"]


class EventFileFormat(StrEnum):
    BINARY = "binary"
    TEXT = "text"
    HDF5 = "hdf5"


def binary_size(num_events: int) -> int:
    """Size in bytes of a binary event file holding num_events events."""
    return num_events * RECORD_SIZE + HEADER_SIZE


class EventIO:

    @staticmethod
    def detect_format(filepath: PathLike) -> Optional[EventFileFormat]:
        """
        Guess the format of an existing file without parsing it.

        Returns:
            BINARY or HDF5 when the signature matches, TEXT otherwise, None if
            the file cannot be opened.
        """
        path = os.fspath(filepath)
        try:
            with open(path, "rb") as f:
                head = f.read(4)
        except OSError:
            return None
        if len(head) == 4 and struct.unpack("<I", head)[0] == MAGIC:
            return EventFileFormat.BINARY
        if h5py.is_hdf5(path):
            return EventFileFormat.HDF5
        return EventFileFormat.TEXT

    @staticmethod
    def read(buffer: EventBuffer, filepath: PathLike) -> bool:
        """
        Load an event file into buffer, replacing its contents.

        A file carrying the binary magic is only ever parsed as binary: a bad
        version or size is a failure, not a reason to try the text parser.

        Args:
            buffer: Destination buffer.
            filepath: File to read.

        Returns:
            True on success. On failure the buffer is unchanged.
        """
        path = os.fspath(filepath)
        logger.info(f"Reading events from: {path}")
        if not os.path.isfile(path):
            logger.warning(f"Event file '{path}' does not exist.")
            return False

        try:
            result = EventIO._read_binary(buffer, path)
            if result is not None:
                return result
            if h5py.is_hdf5(path):
                return EventIO._read_hdf5(buffer, path)
            return EventIO._read_text(buffer, path)
        except OSError as e:
            logger.error(f"Failed to read events from '{path}': {e}")
            return False

    @staticmethod
    def write(
        buffer: EventBuffer,
        filepath: PathLike,
        file_format: Union[EventFileFormat, str] = EventFileFormat.BINARY
    ) -> bool:
        """
        Write the buffer contents to filepath.

        Returns:
            True if the file was completely written.
        """
        path = os.fspath(filepath)
        try:
            file_format = EventFileFormat(file_format)
        except ValueError:
            logger.error(f"Unknown event file format '{file_format}'.")
            return False

        try:
            if file_format == EventFileFormat.BINARY:
                EventIO._write_binary(buffer, path)
            elif file_format == EventFileFormat.TEXT:
                EventIO._write_text(buffer, path)
            else:
                EventIO._write_hdf5(buffer, path)
        except OSError as e:
            logger.error(f"Failed to write events to '{path}': {e}")
            return False

        logger.info(f"Events file written as {path}")
        return True

    # --- COMMIT ---

    @staticmethod
    def _commit(
        buffer: EventBuffer,
        positions: npt.NDArray[np.float32],
        radii: npt.NDArray[np.float32],
        values: npt.NDArray[np.float32]
    ) -> None:
        """Replace the buffer contents with fully parsed data; radii are in stored form."""
        buffer.resize(positions.shape[0])
        buffer.assign(0, positions, radii, values, stored_radii=True)

    # --- BINARY ---

    @staticmethod
    def _read_binary(buffer: EventBuffer, path: str) -> Optional[bool]:
        """Returns None when the file does not carry the binary magic."""
        with open(path, "rb") as f:
            header = f.read(HEADER_SIZE)
            payload = f.read()
        size = len(header) + len(payload)

        if len(header) < 4 or struct.unpack_from("<I", header)[0] != MAGIC:
            return None

        if len(header) < HEADER_SIZE or struct.unpack(HEADER_FMT, header)[1] != VERSION:
            logger.warning(f"Bad version in {path}")
            return False

        num_events = (size - HEADER_SIZE) // RECORD_SIZE
        if binary_size(num_events) != size:
            logger.warning(f"Error while reading {num_events} events from {path}: "
                           f"expected {binary_size(num_events)} bytes, found {size}.")
            return False

        records = np.frombuffer(payload, dtype="<f4").reshape(num_events, FIELDS_PER_EVENT)
        EventIO._commit(buffer, records[:, 0:3], records[:, 3], records[:, 4])
        logger.info(f"Loaded {num_events} events from binary file {path}")
        return True

    @staticmethod
    def _write_binary(buffer: EventBuffer, path: str) -> None:
        records = EventIO._records(buffer)
        with open(path, "wb") as f:
            f.write(struct.pack(HEADER_FMT, MAGIC, VERSION))
            f.write(records.astype("<f4", copy=False).tobytes())

    # --- TEXT ---

    @staticmethod
    def _read_text(buffer: EventBuffer, path: str) -> bool:
        expected: Optional[int] = None
        rows: list[list[float]] = []

        try:
            with open(path, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    stripped = line.strip()
                    if not stripped or stripped.startswith("#"):
                        continue

                    if COUNT_DIRECTIVE in stripped:
                        try:
                            expected = int(stripped.split()[-1])
                        except ValueError:
                            expected = -1
                        if expected < 0:
                            logger.warning(f"Invalid event count on line {line_number} of {path}: '{stripped}'")
                            return False
                        continue

                    if expected is None:
                        logger.warning(f"No events to load from {path}: the '{COUNT_DIRECTIVE} N' line "
                                       f"must precede the first event (line {line_number}).")
                        return False

                    tokens = stripped.split()
                    try:
                        if len(tokens) != FIELDS_PER_EVENT:
                            raise ValueError(f"{len(tokens)} fields")
                        rows.append([float(token) for token in tokens])
                    except ValueError:
                        logger.warning(f"Error while reading {expected} events from {path}: "
                                       f"event {len(rows)} (line {line_number}) ill-formed.")
                        return False
        except UnicodeDecodeError as e:
            logger.warning(f"{path} is neither a binary, HDF5 nor UTF-8 text event file: {e}")
            return False

        if expected is None:
            logger.warning(f"No '{COUNT_DIRECTIVE} N' line found in {path}")
            return False
        if len(rows) != expected:
            logger.warning(f"{path} declares {expected} events but contains {len(rows)}.")
            return False

        data = np.array(rows, dtype=np.float32).reshape(-1, FIELDS_PER_EVENT)
        EventIO._commit(buffer, data[:, 0:3], data[:, 3], data[:, 4])
        logger.info(f"Loaded {expected} events from text file {path}")
        return True

    @staticmethod
    def _write_text(buffer: EventBuffer, path: str) -> None:
        records = EventIO._records(buffer)
        with open(path, "w", encoding="utf-8") as f:
            f.write("# Spatial events (3D position, radius and value), in the following format:\n"
                    "#     posX posY posZ radius value\n"
                    f"# File version: {VERSION}\n"
                    f"# Producer version: {PRODUCER_VERSION}\n"
                    f"{COUNT_DIRECTIVE} {records.shape[0]}\n")
            for row in records:
                # str() of a float32 is its shortest round-trip representation
                f.write(" ".join(str(v) for v in row) + "\n")

    # --- HDF5 ---

    @staticmethod
    def _read_hdf5(buffer: EventBuffer, path: str) -> bool:
        with h5py.File(path, "r") as f:
            if f.attrs.get("magic") != MAGIC:
                logger.warning(f"{path} is an HDF5 file but not an event file.")
                return False
            if f.attrs.get("version") != VERSION:
                logger.warning(f"Bad version in {path}")
                return False

            missing = [name for name in ("positions", "radii", "values") if name not in f]
            if missing:
                logger.warning(f"Missing datasets in {path}: {', '.join(missing)}")
                return False

            positions = np.asarray(f["positions"][()], dtype=np.float32)
            radii = np.asarray(f["radii"][()], dtype=np.float32)
            values = np.asarray(f["values"][()], dtype=np.float32)

        num_events = positions.shape[0] if positions.ndim == 2 else -1
        if (positions.ndim != 2 or positions.shape[1] != 3
                or radii.shape != (num_events,) or values.shape != (num_events,)):
            logger.warning(f"Inconsistent dataset shapes in {path}: positions {positions.shape}, "
                           f"radii {radii.shape}, values {values.shape}")
            return False

        EventIO._commit(buffer, positions, radii, values)
        logger.info(f"Loaded {num_events} events from HDF5 file {path}")
        return True

    @staticmethod
    def _write_hdf5(buffer: EventBuffer, path: str) -> None:
        with h5py.File(path, "w") as f:
            f.attrs["magic"] = MAGIC
            f.attrs["version"] = VERSION
            f.attrs["producer_version"] = PRODUCER_VERSION
            f.create_dataset("positions", data=buffer.positions)
            f.create_dataset("radii", data=np.array(buffer.radii))
            f.create_dataset("values", data=np.array(buffer.values))
            logger.debug(f"Saved {buffer.num_events} events to HDF5.")

    @staticmethod
    def _records(buffer: EventBuffer) -> npt.NDArray[np.float32]:
        """(n, 5) array in on-disk field order."""
        return np.column_stack((
            buffer.positions_x, buffer.positions_y, buffer.positions_z, buffer.radii, buffer.values
        )).astype(np.float32, copy=False)
