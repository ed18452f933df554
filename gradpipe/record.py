"""
File persistence for optimizer records.

A record is the nested dict returned by ``OptimizerAdaptor.to_record()``:

    {param_id: {'weight_decay_state': {'grad_last_step': Tensor} | None,
                'lr_decay_state': {'time': int, 'sum': Tensor}}}

Recorders write it next to a small metadata header (format, version, float
dtype) and read it back. Floating tensors are stored at the precision chosen by
the settings and come back at that precision unless ``load`` is given a
``dtype``; the adaptor casts states to each parameter's dtype on the next step.
Tensors are always written from and loaded onto the CPU.

Example:
    >>> recorder = BinFileRecorder(FullPrecisionSettings())
    >>> path = recorder.record(optimizer.to_record(), "checkpoints/optim")
    >>> optimizer.load_record(recorder.load(path))
"""

import abc
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import torch

from .errors import RecordError

RECORD_VERSION = 1

PathLike = Union[str, Path]


class PrecisionSettings:
    dtype: torch.dtype = torch.float32


class FullPrecisionSettings(PrecisionSettings):
    dtype = torch.float32


class HalfPrecisionSettings(PrecisionSettings):
    dtype = torch.float16


class DoublePrecisionSettings(PrecisionSettings):
    dtype = torch.float64


def _convert_floats(value: Any, dtype: Optional[torch.dtype]) -> Any:
    if isinstance(value, dict):
        return {key: _convert_floats(item, dtype) for key, item in value.items()}
    if torch.is_tensor(value):
        value = value.detach().cpu()
        if dtype is not None and value.is_floating_point():
            value = value.to(dtype)
        return value
    return value


class FileRecorder(abc.ABC):
    """
    Base class for recorders writing one record per file.

    Args:
        settings (PrecisionSettings, optional): Storage precision. Default: full (float32)
    """

    FORMAT: str = ''
    EXTENSION: str = ''

    def __init__(self, settings: Optional[PrecisionSettings] = None):
        self.settings = settings if settings is not None else FullPrecisionSettings()

    def _metadata(self) -> Dict[str, Any]:
        return {
            'format': self.FORMAT,
            'version': RECORD_VERSION,
            'float_dtype': str(self.settings.dtype).replace('torch.', ''),
        }

    def _check_metadata(self, metadata: Dict[str, Any], path: Path) -> None:
        if metadata.get('format') != self.FORMAT:
            raise RecordError(f"{path}: expected format '{self.FORMAT}', "
                              f"found '{metadata.get('format')}'")
        if metadata.get('version') != RECORD_VERSION:
            raise RecordError(f"{path}: unsupported record version {metadata.get('version')} "
                              f"(supported: {RECORD_VERSION})")

    def record(self, item: Dict[str, Any], path: PathLike) -> Path:
        """
        Write ``item`` to ``path`` with this recorder's extension.

        Returns:
            Path of the written file
        """
        path = Path(path).with_suffix(self.EXTENSION)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._save(self._metadata(), _convert_floats(item, self.settings.dtype), path)
        return path

    def load(self, path: PathLike, dtype: Optional[torch.dtype] = None) -> Dict[str, Any]:
        """
        Read a record written by :meth:`record`.

        Args:
            path: File written by :meth:`record`, with or without extension
            dtype (optional): Cast floating tensors to this dtype. Default: keep the
                stored precision

        Raises:
            RecordError: If the file is missing, unreadable, or of another format
        """
        path = Path(path)
        if not path.suffix:
            path = path.with_suffix(self.EXTENSION)
        if not path.exists():
            raise RecordError(f"Record file not found: {path}")

        metadata, item = self._load(path)
        self._check_metadata(metadata, path)
        return _convert_floats(item, dtype)

    @abc.abstractmethod
    def _save(self, metadata: Dict[str, Any], item: Dict[str, Any], path: Path) -> None:
        ...

    @abc.abstractmethod
    def _load(self, path: Path):
        ...


class BinFileRecorder(FileRecorder):
    """Binary records through ``torch.save``."""

    FORMAT = 'torch-bin'
    EXTENSION = '.bin'

    def _save(self, metadata, item, path):
        torch.save({'metadata': metadata, 'item': item}, path)

    def _load(self, path):
        try:
            payload = torch.load(path, map_location='cpu', weights_only=True)
        except Exception as err:
            raise RecordError(f"Could not read record {path}: {err}") from err
        if not isinstance(payload, dict) or 'metadata' not in payload or 'item' not in payload:
            raise RecordError(f"{path} is not a gradpipe record")
        return payload['metadata'], payload['item']


class NpzFileRecorder(FileRecorder):
    """
    Portable records as a numpy ``.npz`` archive.

    Parameter identities are stored in a separate table and entries are keyed
    ``<index>/<field>/<field>``, so identities may contain any character. Fields
    that are None are not written and come back missing.
    """

    FORMAT = 'numpy-npz'
    EXTENSION = '.npz'

    IDS_KEY = '__param_ids__'
    META_KEYS = ('format', 'version', 'float_dtype')

    def _flatten_into(self, arrays: Dict[str, np.ndarray], prefix: str, value: Any) -> None:
        if isinstance(value, dict):
            for key, item in value.items():
                if '/' in key:
                    raise RecordError(f"Record field names may not contain '/': {key}")
                self._flatten_into(arrays, f"{prefix}/{key}", item)
        elif value is None:
            return
        elif torch.is_tensor(value):
            arrays[prefix] = value.numpy()
        else:
            arrays[prefix] = np.asarray(value)

    def _save(self, metadata, item, path):
        param_ids = list(item.keys())
        arrays = {self.IDS_KEY: np.array(param_ids, dtype=np.str_)}
        for key in self.META_KEYS:
            arrays[f"__{key}__"] = np.asarray(metadata[key])
        for index, param_id in enumerate(param_ids):
            self._flatten_into(arrays, str(index), item[param_id])
        np.savez(path, **arrays)

    @staticmethod
    def _to_value(array: np.ndarray) -> Any:
        if array.ndim == 0 and array.dtype.kind in 'iu':
            return int(array)
        return torch.from_numpy(np.array(array))

    def _load(self, path):
        try:
            archive = np.load(path, allow_pickle=False)
        except (OSError, ValueError) as err:
            raise RecordError(f"Could not read record {path}: {err}") from err

        with archive:
            if self.IDS_KEY not in archive.files:
                raise RecordError(f"{path} is not a gradpipe record")

            metadata = {}
            for key in self.META_KEYS:
                meta_key = f"__{key}__"
                if meta_key in archive.files:
                    metadata[key] = archive[meta_key].item()

            param_ids = [str(param_id) for param_id in archive[self.IDS_KEY]]
            item: Dict[str, Any] = {param_id: {} for param_id in param_ids}
            for key in archive.files:
                if key.startswith('__'):
                    continue
                index, *fields = key.split('/')
                node = item[param_ids[int(index)]]
                for field in fields[:-1]:
                    node = node.setdefault(field, {})
                node[fields[-1]] = self._to_value(archive[key])

        return metadata, item
