import numpy as np

# SI factors: concentration -> kg/m^3, flow -> m^3/s, load rate -> kg/s
CONC_UNITS = {
    'mg/L': 1e-3,
    'ug/L': 1e-6,
    'g/L': 1.0,
    'g/m^3': 1e-3,
    'kg/m^3': 1.0,
}

FLOW_UNITS = {
    'cfs': 0.028316846592,
    'm^3/s': 1.0,
    'cms': 1.0,
    'L/s': 1e-3,
    'm^3/d': 1 / 86400.0,
}

LOAD_RATE_UNITS = {
    'kg/s': 1.0,
    'g/s': 1e-3,
    'kg/d': 1 / 86400.0,
    'g/d': 1e-3 / 86400.0,
    'lb/d': 0.45359237 / 86400.0,
    'kg/y': 1 / (365.25 * 86400.0),
    't/y': 1000 / (365.25 * 86400.0),
}

FORMATS = ('conc', 'flux')


def match_format(flux_or_conc):
    """
    Normalises a format designator to 'conc' or 'flux'.
    """
    aliases = {'conc': 'conc', 'concentration': 'conc', 'flux': 'flux'}
    key = str(flux_or_conc).lower() if flux_or_conc is not None else None
    if key not in aliases:
        raise ValueError(f"Format must be one of {FORMATS}, got '{flux_or_conc}'")
    return aliases[key]


class Metadata:
    def __init__(self, dates, constituent, flow=None, flux=None, conc_units='mg/L', flow_units='cfs', load_rate_units='kg/d'):
        """
        dates: name of the date column
        constituent: name of the concentration column
        flow: name of the discharge column (optional, needed for flux <-> conc)
        flux: name of a pre-computed flux column (optional)
        conc_units, flow_units, load_rate_units: unit labels, see CONC_UNITS etc.
        """
        if conc_units not in CONC_UNITS:
            raise ValueError(f"Unknown concentration units '{conc_units}'. Options: {list(CONC_UNITS)}")
        if flow_units not in FLOW_UNITS:
            raise ValueError(f"Unknown flow units '{flow_units}'. Options: {list(FLOW_UNITS)}")
        if load_rate_units not in LOAD_RATE_UNITS:
            raise ValueError(f"Unknown load rate units '{load_rate_units}'. Options: {list(LOAD_RATE_UNITS)}")

        self.dates = dates
        self.constituent = constituent
        self.flow = flow
        self.flux = flux
        self.conc_units = conc_units
        self.flow_units = flow_units
        self.load_rate_units = load_rate_units

    def __repr__(self):
        return (f"Metadata(dates='{self.dates}', constituent='{self.constituent}', flow='{self.flow}', "
                f"flux='{self.flux}', units={self.conc_units}*{self.flow_units}->{self.load_rate_units})")

    def _column_for(self, field):
        columns = {
            'date': self.dates,
            'conc': self.constituent,
            'flow': self.flow,
            'flux': self.flux,
        }
        if field not in columns:
            raise ValueError(f"Unknown field '{field}'. Options: {list(columns)}")
        return columns[field]

    def get_col(self, data, field):
        """
        Returns the column of `data` mapped to the semantic `field`
        ('date', 'conc', 'flow' or 'flux').
        """
        col = self._column_for(field)
        if col is None:
            raise ValueError(f"Metadata does not name a '{field}' column")
        if col not in data.columns:
            raise ValueError(f"Data must contain the {field} column '{col}'")
        return data[col]

    def has_col(self, data, field):
        col = self._column_for(field)
        return col is not None and col in data.columns

    def flux_conc_factor(self):
        """
        Scalar k such that flux = conc * flow * k in the configured units.
        mg/L * cfs -> kg/d gives ~2.4466.
        """
        return CONC_UNITS[self.conc_units] * FLOW_UNITS[self.flow_units] / LOAD_RATE_UNITS[self.load_rate_units]

    def observe_solute(self, data, flux_or_conc, calculate=None):
        """
        Returns observed concentration or flux as a float array.

        calculate: None computes the series from the other format and
            discharge only if the requested column is absent; True always
            computes; False never computes.
        """
        flux_or_conc = match_format(flux_or_conc)

        if calculate is None:
            calculate = not self.has_col(data, flux_or_conc)

        if not calculate:
            return self.get_col(data, flux_or_conc).to_numpy(dtype=float)

        multiplier = self.get_col(data, 'flow').to_numpy(dtype=float) * self.flux_conc_factor()
        if flux_or_conc == 'flux':
            return self.get_col(data, 'conc').to_numpy(dtype=float) * multiplier
        with np.errstate(divide='ignore', invalid='ignore'):
            return self.get_col(data, 'flux').to_numpy(dtype=float) / multiplier

    def format_preds(self, preds, from_format, to_format, newdata):
        """
        Converts predictions between 'conc' and 'flux' using discharge in newdata.
        Raises ValueError if the conversion needs discharge and none is available.
        """
        from_format = match_format(from_format)
        to_format = match_format(to_format)
        preds = np.asarray(preds, dtype=float)

        if from_format == to_format:
            return preds

        flow = self.get_col(newdata, 'flow').to_numpy(dtype=float)
        if len(flow) != len(preds):
            raise ValueError(f"Discharge has {len(flow)} values but there are {len(preds)} predictions")

        multiplier = flow * self.flux_conc_factor()
        if to_format == 'flux':
            return preds * multiplier
        with np.errstate(divide='ignore', invalid='ignore'):
            return preds / multiplier
