import numpy as np
from scipy.interpolate import CubicSpline, make_smoothing_spline


def _prepare_points(x_in, y_in):
    """
    Cleans known points before interpolation.
    Drops NaN pairs, sorts by position and averages values at tied positions
    (same as R's approx/spline with ties=mean).
    Returns (x_unique, y_mean) as float arrays.
    """
    x = np.asarray(x_in, dtype=float).ravel()
    y = np.asarray(y_in, dtype=float).ravel()
    if len(x) != len(y):
        raise ValueError(f"x_known and y_known must have the same length ({len(x)} != {len(y)})")

    valid = ~np.isnan(x) & ~np.isnan(y)
    x = x[valid]
    y = y[valid]

    # np.unique sorts, inverse maps each point to its unique position
    x_unique, inverse = np.unique(x, return_inverse=True)
    if len(x_unique) == len(x):
        order = np.argsort(x, kind='stable')
        return x[order], y[order]

    sums = np.bincount(inverse, weights=y)
    counts = np.bincount(inverse)
    return x_unique, sums / counts


def _degenerate(x_known, y_known, x_out):
    """
    Handles the 0- and 1-point cases shared by every engine.
    Returns the prediction array, or None if there are >= 2 points.
    """
    if len(x_known) == 0:
        return np.full(len(x_out), np.nan)
    if len(x_known) == 1:
        return np.full(len(x_out), y_known[0])
    return None


def linear_interpolation(x_in, y_in, x_out):
    """
    Piecewise linear interpolation between neighbouring observations.
    Queries outside the observed range hold the nearest boundary value.
    """
    x_known, y_known = _prepare_points(x_in, y_in)
    x_out = np.asarray(x_out, dtype=float).ravel()
    preds = _degenerate(x_known, y_known, x_out)
    if preds is not None:
        return preds
    return np.interp(x_out, x_known, y_known)


def rectangular_interpolation(x_in, y_in, x_out):
    """
    Step interpolation: each query takes the most recent observation at or
    before it. Queries before the first observation take the first value.
    """
    x_known, y_known = _prepare_points(x_in, y_in)
    x_out = np.asarray(x_out, dtype=float).ravel()
    preds = _degenerate(x_known, y_known, x_out)
    if preds is not None:
        return preds

    idx = np.searchsorted(x_known, x_out, side='right') - 1
    idx = np.clip(idx, 0, len(x_known) - 1)
    preds = y_known[idx]
    preds[np.isnan(x_out)] = np.nan
    return preds


def spline_interpolation(x_in, y_in, x_out):
    """
    Cubic spline through every observation (not-a-knot ends).
    Extrapolates beyond the observed range, so use with care near the edges.
    """
    x_known, y_known = _prepare_points(x_in, y_in)
    x_out = np.asarray(x_out, dtype=float).ravel()
    preds = _degenerate(x_known, y_known, x_out)
    if preds is not None:
        return preds
    if len(x_known) == 2:
        # CubicSpline needs 3+ points for not-a-knot; 2 points is a line anyway
        slope = (y_known[1] - y_known[0]) / (x_known[1] - x_known[0])
        return y_known[0] + slope * (x_out - x_known[0])

    spline = CubicSpline(x_known, y_known, bc_type='not-a-knot', extrapolate=True)
    return spline(x_out)


def smooth_spline_interpolation(x_in, y_in, x_out):
    """
    Penalized smoothing spline (GCV-chosen smoothing).
    Does not pass exactly through the observations.
    Falls back to linear interpolation with fewer than 5 distinct positions.
    """
    x_known, y_known = _prepare_points(x_in, y_in)
    x_out = np.asarray(x_out, dtype=float).ravel()
    preds = _degenerate(x_known, y_known, x_out)
    if preds is not None:
        return preds
    if len(x_known) < 5:
        return np.interp(x_out, x_known, y_known)

    # Rescale positions; epoch seconds are badly conditioned for the penalty
    x0 = x_known[0]
    scale = x_known[-1] - x_known[0]
    spline = make_smoothing_spline((x_known - x0) / scale, y_known)
    return spline((x_out - x0) / scale)


def make_triangular_interpolation(period):
    """
    Returns an engine that averages observations with triangular weights.

    Each observation influences queries within `period` (same units as the
    positions, i.e. seconds for fitted load models), with weight falling
    linearly from 1 at zero distance to 0 at `period`. Queries with no
    observation in range take the value of the nearest observation.
    """
    if period is None or not np.isfinite(period) or period <= 0:
        raise ValueError(f"Triangular interpolation period must be a positive number, got {period}")

    def triangular_interpolation(x_in, y_in, x_out):
        x_known, y_known = _prepare_points(x_in, y_in)
        x_out = np.asarray(x_out, dtype=float).ravel()
        preds = _degenerate(x_known, y_known, x_out)
        if preds is not None:
            return preds

        # (N_out, N_known)
        dist = np.abs(x_out[:, np.newaxis] - x_known[np.newaxis, :])
        w = np.clip(1 - dist / period, 0, None)
        w_sum = w.sum(axis=1)

        preds = np.empty(len(x_out))
        covered = w_sum > 0
        preds[covered] = (w[covered] @ y_known) / w_sum[covered]

        nearest = np.argmin(dist[~covered], axis=1) if np.any(~covered) else np.array([], dtype=int)
        preds[~covered] = y_known[nearest]
        preds[np.isnan(x_out)] = np.nan
        return preds

    triangular_interpolation.period = period
    return triangular_interpolation


def make_distance_weighted_interpolation(power=1):
    """
    Returns an inverse-distance-weighted engine: weights are 1 / d**power.
    A query that coincides with an observation returns that observation.
    """
    if power <= 0:
        raise ValueError(f"Distance weighting power must be positive, got {power}")

    def distance_weighted_interpolation(x_in, y_in, x_out):
        x_known, y_known = _prepare_points(x_in, y_in)
        x_out = np.asarray(x_out, dtype=float).ravel()
        preds = _degenerate(x_known, y_known, x_out)
        if preds is not None:
            return preds

        dist = np.abs(x_out[:, np.newaxis] - x_known[np.newaxis, :])
        exact = dist == 0
        with np.errstate(divide='ignore'):
            w = np.where(exact, 0.0, 1.0 / dist**power)

        preds = (w @ y_known) / w.sum(axis=1)

        hit_rows = np.any(exact, axis=1)
        preds[hit_rows] = y_known[np.argmax(exact[hit_rows], axis=1)]
        preds[np.isnan(x_out)] = np.nan
        return preds

    distance_weighted_interpolation.power = power
    return distance_weighted_interpolation


INTERPOLATIONS = {
    'linear': linear_interpolation,
    'rectangular': rectangular_interpolation,
    'spline': spline_interpolation,
    'smooth_spline': smooth_spline_interpolation,
    # one-day window for epoch-second positions
    'triangular': make_triangular_interpolation(period=86400.0),
    'distance_weighted': make_distance_weighted_interpolation(power=1),
}


def get_interpolation(interp_function):
    """
    Resolves an interpolation engine from a registry name or a callable.
    """
    if callable(interp_function):
        return interp_function
    if isinstance(interp_function, str):
        if interp_function not in INTERPOLATIONS:
            raise ValueError(f"Unknown interpolation '{interp_function}'. Options: {sorted(INTERPOLATIONS)}")
        return INTERPOLATIONS[interp_function]
    raise ValueError("interp_function should be a function or the name of a registered interpolation")
