from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.stats import norm

from interpolations import get_interpolation, linear_interpolation
from loadmeta import match_format

# 'data' is accepted for compatibility; the fitting data is always kept
STORE_OPTIONS = ('data', 'fitting_function', 'uncertainty')
INTERVALS = ('none', 'confidence', 'prediction')

EPOCH = pd.Timestamp('1970-01-01')


def time_class(dates):
    """
    Tags the native type of a date column so that prediction dates can be
    checked against the fitting dates before both are made numeric.
    Returns 'datetime', 'date', 'str' or 'numeric'.
    """
    dates = pd.Series(dates)
    if pd.api.types.is_datetime64_any_dtype(dates):
        return 'datetime'
    if pd.api.types.is_numeric_dtype(dates) and not pd.api.types.is_bool_dtype(dates):
        return 'numeric'

    sample = dates.dropna()
    if len(sample) == 0:
        raise ValueError("Date column contains no values")
    first = sample.iloc[0]
    # datetime (and pd.Timestamp) subclass date, so test it first
    if isinstance(first, datetime):
        return 'datetime'
    if isinstance(first, date):
        return 'date'
    if isinstance(first, str):
        return 'str'
    raise ValueError(f"Unsupported date type '{type(first).__name__}'")


def to_numeric_time(dates):
    """
    Converts a date column to seconds since 1970-01-01 UTC.
    Numeric columns are assumed to already be seconds and pass through.
    """
    dates = pd.Series(dates)
    if time_class(dates) == 'numeric':
        return dates.to_numpy(dtype=float)

    dt = pd.to_datetime(dates)
    if dt.dt.tz is not None:
        dt = dt.dt.tz_convert('UTC').dt.tz_localize(None)
    return ((dt - EPOCH) / pd.Timedelta(seconds=1)).to_numpy(dtype=float)


def leave_out_indices(n, n_out, n_iter, replace=False, rng=None):
    """
    Builds the (n_iter, n_out) matrix of snapshot indices to withhold.

    replace=False draws all n_out * n_iter indices at once, so no index is
    ever withheld twice. replace=True redraws for every iteration: indices
    can recur across iterations but never within one.
    """
    if rng is None:
        rng = np.random.default_rng()
    if n_out > n:
        raise ValueError(f"Cannot leave out {n_out} observations per iteration from only {n}")

    if not replace:
        if n_out * n_iter > n:
            raise ValueError(
                f"Cannot leave out {n_out} x {n_iter} = {n_out * n_iter} observations "
                f"without replacement from only {n}")
        return rng.choice(n, size=n_out * n_iter, replace=False).reshape(n_iter, n_out)

    return np.vstack([rng.choice(n, size=n_out, replace=False) for _ in range(n_iter)])


def _leave_out_mse(fit, left_out, conc_factor, flux_factor):
    """
    One resampling iteration: interpolate the withheld points from the rest.
    Returns (conc MSE, flux MSE) over the withheld points.
    """
    keep = np.ones(len(fit), dtype=bool)
    keep[left_out] = False

    preds = np.asarray(fit.interp_function(fit.dates_in[keep], fit.y_in[keep], fit.dates_in[left_out]), dtype=float)
    resids = fit.y_in[left_out] - preds

    # One of the factors is None: residuals are already in that format
    conc_resids = resids * conc_factor[left_out] if conc_factor is not None else resids
    flux_resids = resids * flux_factor[left_out] if flux_factor is not None else resids

    return np.mean(conc_resids**2), np.mean(flux_resids**2)


@dataclass(frozen=True, eq=False)
class InterpModel:
    """
    Immutable snapshot that a LoadInterp interpolates among.
    dates_in are seconds since the epoch; dates_class is the tag from time_class().
    """
    dates_class: str
    dates_in: np.ndarray
    y_in: np.ndarray
    interp_function: Callable

    def __post_init__(self):
        if not callable(self.interp_function):
            raise ValueError("interp_function should be a function")

        dates_in = np.array(self.dates_in, dtype=float)
        y_in = np.array(self.y_in, dtype=float)
        if len(dates_in) != len(y_in):
            raise ValueError(f"dates_in and y_in must have the same length ({len(dates_in)} != {len(y_in)})")

        dates_in.flags.writeable = False
        y_in.flags.writeable = False
        object.__setattr__(self, 'dates_in', dates_in)
        object.__setattr__(self, 'y_in', y_in)

    def __len__(self):
        return len(self.dates_in)

    def predict(self, dates_out):
        return np.asarray(self.interp_function(self.dates_in, self.y_in, dates_out), dtype=float)


class LoadInterp:
    def __init__(self, data, metadata, interp_format='flux', interp_function=linear_interpolation,
                 retrans_function=None, store=('fitting_function', 'uncertainty'), random_state=None):
        """
        Load model that interpolates among observed fluxes or concentrations.

        data: pandas DataFrame of calibration observations
        metadata: loadmeta.Metadata, used to find the date and response columns
        interp_format: 'flux' or 'conc', the format to interpolate in
        interp_function: engine f(x_known, y_known, x_query) or a name from
            interpolations.INTERPOLATIONS
        retrans_function: must be None; predictions are already in linear space
        store: any of 'fitting_function' (keep a refit closure),
            'uncertainty' (estimate MSE by leave-one-out cross validation)
            and 'data' (no effect, the fitting data is always kept)
        random_state: seed for the leave-one-out ordering

        Residuals are assumed normally distributed when building intervals.
        """
        self.pred_format = match_format(interp_format)
        if retrans_function is not None:
            raise ValueError("Methods for a non-None retrans_function aren't implemented for LoadInterp")
        interp_function = get_interpolation(interp_function)

        if isinstance(store, str):
            store = (store,)
        store = tuple(store)
        unknown = [s for s in store if s not in STORE_OPTIONS]
        if unknown:
            raise ValueError(f"Unknown store option(s) {unknown}. Options: {list(STORE_OPTIONS)}")

        if metadata.dates not in data.columns:
            raise ValueError(f"Data must contain the date column '{metadata.dates}'")

        # Convert dates now rather than at prediction time; estimate_mse reuses them many times
        dates = metadata.get_col(data, 'date')
        dates_class = time_class(dates)
        dates_in = to_numeric_time(dates)
        y_in = metadata.observe_solute(data, self.pred_format)

        keep = ~np.isnan(dates_in) & ~np.isnan(y_in)
        if not np.any(keep):
            raise ValueError(f"No observations have both a date and a {self.pred_format} value")

        self.metadata = metadata
        self.data = data.loc[keep].copy()
        self.retrans_function = None
        self.fit = InterpModel(dates_class, dates_in[keep], y_in[keep], interp_function)

        self.fitting_function = None
        if 'fitting_function' in store:
            pred_format = self.pred_format

            def fitting_function(training_data, store=()):
                return LoadInterp(training_data, metadata, interp_format=pred_format,
                                  interp_function=interp_function, retrans_function=None, store=store)

            self.fitting_function = fitting_function

        self.MSE = None
        if 'uncertainty' in store:
            # Leave-one-out cross validation (jackknife)
            self.MSE = self.estimate_mse(n_out=1, n_iter=len(self.fit), replace=False, random_state=random_state)

    def __repr__(self):
        engine = getattr(self.fit.interp_function, '__name__', repr(self.fit.interp_function))
        uncertainty = 'stored' if self.MSE is not None else 'not stored'
        return f"LoadInterp(format='{self.pred_format}', interpolation={engine}, n_obs={len(self.fit)}, uncertainty {uncertainty})"

    def get_fitting_data(self):
        return self.data

    def get_metadata(self):
        return self.metadata

    def get_fitting_function(self):
        if self.fitting_function is None:
            raise ValueError("Fitting function is unavailable. Try fitting the model with store=('fitting_function',).")
        return self.fitting_function

    def _conversion_factors(self):
        """
        Per-observation multipliers that turn a residual in the model's format
        into the other format. Returns (conc_factor, flux_factor); the native
        one is None. A conversion that can't be made (e.g. no discharge) gives NaNs.
        """
        n = len(self.fit)
        other = 'conc' if self.pred_format == 'flux' else 'flux'
        try:
            factor = self.metadata.format_preds(np.ones(n), self.pred_format, other, self.data)
        except ValueError:
            factor = np.full(n, np.nan)

        if self.pred_format == 'flux':
            return factor, None
        return None, factor

    def estimate_mse(self, n_out=1, n_iter=None, replace=False, random_state=None, n_jobs=1):
        """
        Estimates prediction-error variance by leave-n-out resampling.

        This is leave-one-out cross validation when n_out=1, n_iter=N and
        replace=False, and k-fold cross validation when n_out * n_iter = N and
        replace=False.

        n_out: observations withheld per iteration
        n_iter: number of iterations, default floor(N / n_out)
        replace: allow withheld observations to recur across iterations
        random_state: seed for numpy.random.default_rng
        n_jobs: joblib workers for the iterations (1 = serial)

        Returns: DataFrame indexed ['mean', 'sd'] with columns ['conc', 'flux']
            describing the distribution of per-iteration MSEs.
        """
        n = len(self.fit)
        if int(n_out) != n_out or not 1 <= n_out < n:
            raise ValueError(f"n_out must be an integer from 1 to {n - 1} for {n} observations, got {n_out}")
        n_out = int(n_out)
        if n_iter is None:
            n_iter = n // n_out
        if int(n_iter) != n_iter or n_iter < 1:
            raise ValueError(f"n_iter must be a positive integer, got {n_iter}")
        n_iter = int(n_iter)

        print(f"Estimating MSE (leave-{n_out}-out, {n_iter} iterations, replace={replace})...")

        # 1. Which observations to withhold in each iteration
        rng = np.random.default_rng(random_state)
        leave_out = leave_out_indices(n, n_out, n_iter, replace=replace, rng=rng)

        # 2. Conversion factors, computed once for the full data
        conc_factor, flux_factor = self._conversion_factors()

        # 3. Per-iteration MSEs
        if n_jobs == 1:
            rows = [_leave_out_mse(self.fit, left_out, conc_factor, flux_factor) for left_out in leave_out]
        else:
            rows = Parallel(n_jobs=n_jobs, prefer='threads')(
                delayed(_leave_out_mse)(self.fit, left_out, conc_factor, flux_factor) for left_out in leave_out
            )
        residuals_mse = pd.DataFrame(rows, columns=['conc', 'flux'])

        # 4. Distribution of the MSE across iterations; any NaN iteration makes that format unavailable
        return pd.DataFrame({'mean': residuals_mse.mean(skipna=False), 'sd': residuals_mse.std(skipna=False)}).T

    def predict_solute(self, flux_or_conc, newdata=None, interval='none', level=0.95,
                       se_fit=False, se_pred=False, date=False):
        """
        Predicts flux or concentration at the dates in newdata.

        flux_or_conc: 'flux' or 'conc', the format of the returned predictions
        newdata: DataFrame holding the metadata date column (and discharge if a
            format conversion is needed), or a bare sequence of dates.
            Defaults to the fitting data.
        interval: 'none' or 'prediction'. Confidence intervals are not
            available for interpolation models.
        level: coverage of the prediction interval
        se_fit: must be False, not available for interpolation models
        se_pred: add the prediction standard error
        date: prepend a 'date' column

        Returns: array of predictions, or a DataFrame with 'fit' and the
            requested 'lwr', 'upr', 'se_pred' columns, in newdata order.
        """
        flux_or_conc = match_format(flux_or_conc)
        if interval not in INTERVALS:
            raise ValueError(f"interval must be one of {INTERVALS}, got '{interval}'")
        if not 0 < level < 1:
            raise ValueError(f"level must be between 0 and 1, got {level}")

        if newdata is None:
            newdata = self.data
        elif not isinstance(newdata, pd.DataFrame):
            newdata = pd.DataFrame({self.metadata.dates: pd.Series(newdata)})

        dates_out = self.metadata.get_col(newdata, 'date')
        out_class = time_class(dates_out)
        if out_class != self.fit.dates_class:
            raise ValueError(
                f"Dates in newdata must have the same class ({self.fit.dates_class}) "
                f"as dates in the fitting data, got {out_class}")

        preds = self.fit.predict(to_numeric_time(dates_out))
        preds = self.metadata.format_preds(preds, self.pred_format, flux_or_conc, newdata)

        if interval != 'none' or se_fit or se_pred:
            if interval == 'confidence':
                raise NotImplementedError("Confidence intervals are not implemented for LoadInterp; use interval='prediction'")
            if se_fit:
                raise NotImplementedError("se_fit is not implemented for LoadInterp; use se_pred")
            if self.MSE is None:
                raise ValueError("Uncertainty estimates are unavailable. Try fitting the model with store=('uncertainty',).")
            mse = self.MSE.loc['mean', flux_or_conc]
            if np.isnan(mse):
                raise ValueError(
                    f"Uncertainty estimates are unavailable for {flux_or_conc}. "
                    "Try fitting the model with data that include discharge.")

            # MSEs are format specific, so look up the one for the requested format
            se = np.sqrt(mse)
            preds = pd.DataFrame({'fit': preds})
            if interval == 'prediction':
                # No clear degrees of freedom for an interpolation, so normal rather than t quantiles
                lower_q, upper_q = norm.ppf(0.5 + np.array([-1, 1]) * level / 2)
                preds['lwr'] = preds['fit'] + lower_q * se
                preds['upr'] = preds['fit'] + upper_q * se
            if se_pred:
                preds['se_pred'] = se

        if date:
            if not isinstance(preds, pd.DataFrame):
                preds = pd.DataFrame({'fit': preds})
            preds.insert(0, 'date', dates_out.to_numpy())

        return preds
