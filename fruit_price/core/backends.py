"""Execution backends and model versions for the fruit detector.

A backend is a capability: each one maps to a device string understood by
the model runtime and a probe that tells whether the current host can run
it. Providers never branch on the backend themselves, they receive the
resolved device.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from fruit_price.core.errors import UnsupportedBackendError

logger = logging.getLogger('fruit_price.backends')


class Backend(str, Enum):
    CPU = 'cpu'
    GPU = 'gpu'
    ACCELERATOR = 'accelerator'


class ModelVersion(str, Enum):
    V1 = 'v1'
    V2 = 'v2'


MODEL_FILES = {
    ModelVersion.V1: 'fruit_v1.pt',
    ModelVersion.V2: 'fruit_v2.pt',
}


def coerce_model_version(version) -> ModelVersion:
    try:
        return ModelVersion(version)
    except ValueError:
        logger.warning('Unknown model version=%r, falling back to %s', version, ModelVersion.V1.value)
        return ModelVersion.V1


def model_file_for(version) -> str:
    return MODEL_FILES[coerce_model_version(version)]


def _torch():
    try:
        import torch
    except ImportError:
        return None
    return torch


def _cuda_available() -> bool:
    torch = _torch()
    return torch is not None and bool(torch.cuda.is_available())


def _mps_available() -> bool:
    torch = _torch()
    mps = getattr(getattr(torch, 'backends', None), 'mps', None)
    return mps is not None and bool(mps.is_available())


@dataclass(frozen=True)
class ExecutionStrategy:
    backend: Backend
    device: str
    probe: Callable[[], bool]


STRATEGIES: dict[Backend, ExecutionStrategy] = {
    Backend.CPU: ExecutionStrategy(Backend.CPU, 'cpu', lambda: True),
    Backend.GPU: ExecutionStrategy(Backend.GPU, 'cuda:0', _cuda_available),
    Backend.ACCELERATOR: ExecutionStrategy(Backend.ACCELERATOR, 'mps', _mps_available),
}


def select_strategy(backend: Backend) -> ExecutionStrategy:
    strategy = STRATEGIES[Backend(backend)]
    if not strategy.probe():
        raise UnsupportedBackendError(
            f'{strategy.backend.value.upper()} is not supported on this device',
            details={'backend': strategy.backend.value},
        )
    return strategy


def resolve_strategy(backend: Backend) -> tuple[ExecutionStrategy, UnsupportedBackendError | None]:
    """Select the requested strategy, falling back to CPU when it is unavailable."""
    try:
        return select_strategy(backend), None
    except UnsupportedBackendError as exc:
        logger.warning('Backend unavailable backend=%s message=%s falling back to cpu', backend, exc.message)
        return STRATEGIES[Backend.CPU], exc
