from typing import Dict

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score


def regression_fit_metrics(y_true, y_pred) -> Dict[str, float]:
    y = np.asarray(y_true, dtype=float).ravel()
    yhat = np.asarray(y_pred, dtype=float).ravel()
    mask = ~(np.isnan(y) | np.isnan(yhat))
    y, yhat = y[mask], yhat[mask]
    if y.size == 0:
        return {"n": 0, "rmse": np.nan, "mae": np.nan, "r2": np.nan}
    return {
        "n": int(y.size),
        "rmse": float(np.sqrt(mean_squared_error(y, yhat))),
        "mae": float(mean_absolute_error(y, yhat)),
        "r2": float(r2_score(y, yhat)) if y.size > 1 else np.nan,
    }
