from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Union

import torch

from .errors import ParameterRangeError

device = torch.device("cuda" if torch.cuda.is_available() else "cpu")

config = {
    'seed': 123456,

    # model
    'family': 'binomial',
    'alpha': 0.95,
    'lambda_min': 0.008,
    'nlambda': 20,
    'nfolds': 10,
    'standardize': False,

    # solver
    'maxit': 1000,
    'thresh': 1e-3,
    'gamma': 0.8,
    'step': 1.0,
    'tolerance': 1e-6,
    'workers': 1,
    'device': device,

    # scoring
    'ssgsea_alpha': 0.25,
    'ssgsea_normalize': True,
    'kcdf': 'none',

    # inputs / outputs
    'response_column': 'Type',
    'positive_label': None,
    'plot_dir': 'plots',
}


def validate_config(cfg: dict) -> dict:
    """Reject unknown keys and out-of-range values."""
    unknown = set(cfg) - set(config)
    if unknown:
        raise ParameterRangeError(f"Unknown configuration key(s): {sorted(unknown)}")
    if not 0.0 <= float(cfg['alpha']) <= 1.0:
        raise ParameterRangeError("'alpha' must be between 0 and 1.")
    if not 0.0 < float(cfg['lambda_min']) < 1.0:
        raise ParameterRangeError("'lambda_min' must lie strictly between 0 and 1.")
    if not 0.0 < float(cfg['gamma']) < 1.0:
        raise ParameterRangeError("'gamma' must lie strictly between 0 and 1.")
    if int(cfg['nfolds']) < 2:
        raise ParameterRangeError("'nfolds' must be at least 2.")
    for key in ('nlambda', 'maxit', 'workers'):
        if int(cfg[key]) < 1:
            raise ParameterRangeError(f"'{key}' must be at least 1.")
    for key in ('thresh', 'step', 'tolerance'):
        if float(cfg[key]) <= 0:
            raise ParameterRangeError(f"'{key}' must be positive.")
    if str(cfg['family']).lower() not in ('gaussian', 'binomial'):
        raise ParameterRangeError(f"Unknown family '{cfg['family']}'.")
    if cfg['kcdf'] not in ('none', 'gaussian'):
        raise ParameterRangeError(f"Unknown kcdf '{cfg['kcdf']}'.")
    return cfg


def load_config(path: Optional[Union[str, Path]] = None, **overrides) -> dict:
    """
    Defaults, updated from a JSON file and then from keyword overrides.
    ``None`` overrides are ignored so unset CLI flags keep the file/default value.
    """
    cfg = dict(config)
    if path is not None:
        with open(path, "r", encoding="utf-8") as fh:
            cfg.update(json.load(fh))
    cfg.update({k: v for k, v in overrides.items() if v is not None})
    if isinstance(cfg['device'], str):
        cfg['device'] = torch.device(cfg['device'])
    return validate_config(cfg)
