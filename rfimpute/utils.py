# utils.py - Utility functions for rfimpute

from __future__ import annotations

import contextlib
import logging
import sys
from typing import Optional, Union

import joblib
import numpy as np

SeedLike = Union[None, int, np.random.SeedSequence]

_MAX_SEED = 2**31 - 1


def master_seed_sequence(random_state: SeedLike) -> np.random.SeedSequence:
    """
    SeedSequence for a run. ``None`` draws fresh OS entropy; the entropy is kept
    on the sequence so the run can be replayed.
    """
    if isinstance(random_state, np.random.SeedSequence):
        return random_state
    if random_state is None:
        return np.random.SeedSequence()
    return np.random.SeedSequence(int(random_state))


def substream(master: np.random.SeedSequence, index: int) -> np.random.Generator:
    """
    Independent generator for imputation ``index``.

    Depends only on the master entropy and the index, never on how many
    generators were created before, so results do not depend on worker count
    or scheduling order.
    """
    child = np.random.SeedSequence(master.entropy, spawn_key=tuple(master.spawn_key) + (int(index),))
    return np.random.default_rng(child)


def draw_seed(rng: np.random.Generator) -> int:
    """Integer seed for a learner's ``random_state``."""
    return int(rng.integers(0, _MAX_SEED))


@contextlib.contextmanager
def tqdm_joblib(tqdm_object):
    """Context manager to patch joblib to report into tqdm progress bar.

    Usage:
        with tqdm_joblib(tqdm(desc="Imputations", total=10)):
            Parallel(n_jobs=4)(delayed(func)(i) for i in range(10))
    """
    class TqdmBatchCompletionCallback(joblib.parallel.BatchCompletionCallBack):
        def __call__(self, *args, **kwargs):
            tqdm_object.update(n=self.batch_size)
            return super().__call__(*args, **kwargs)

    old_batch_callback = joblib.parallel.BatchCompletionCallBack
    joblib.parallel.BatchCompletionCallBack = TqdmBatchCompletionCallback
    try:
        yield tqdm_object
    finally:
        joblib.parallel.BatchCompletionCallBack = old_batch_callback
        tqdm_object.close()


def configure_logging(verbose: int = 0, logger_name: Optional[str] = "rfimpute") -> logging.Logger:
    """
    Attach a console handler for scripts. 0 -> WARNING, 1 -> INFO, 2+ -> DEBUG.
    """
    level = logging.WARNING if verbose <= 0 else (logging.INFO if verbose == 1 else logging.DEBUG)
    logger = logging.getLogger(logger_name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("[%(name)s] %(levelname)s %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
