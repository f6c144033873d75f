import sys
import os
import numpy as np
import pandas as pd
import unittest

# Ensure src is in path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from loadmeta import Metadata, match_format


class TestMetadata(unittest.TestCase):
    def setUp(self):
        dates = pd.date_range(start='2015-01-01', periods=6, freq='7D')
        self.df = pd.DataFrame({
            'Date': dates,
            'Conc': [1.0, 2.0, 3.0, 2.0, 1.5, 1.0],
            'Q': [100.0, 150.0, 400.0, 250.0, 120.0, 90.0],
        })
        self.meta = Metadata(dates='Date', constituent='Conc', flow='Q',
                             conc_units='mg/L', flow_units='cfs', load_rate_units='kg/d')

    def test_flux_conc_factor(self):
        # Standard USGS constant for mg/L * cfs -> kg/d
        self.assertAlmostEqual(self.meta.flux_conc_factor(), 2.446576, places=5)

    def test_unknown_units(self):
        with self.assertRaises(ValueError):
            Metadata(dates='Date', constituent='Conc', conc_units='ppm')

    def test_get_col(self):
        self.assertTrue(self.meta.get_col(self.df, 'flow').equals(self.df['Q']))
        with self.assertRaises(ValueError):
            self.meta.get_col(self.df, 'flux')  # not named
        with self.assertRaises(ValueError):
            self.meta.get_col(self.df[['Date', 'Conc']], 'flow')  # named but absent
        with self.assertRaises(ValueError):
            self.meta.get_col(self.df, 'temperature')

    def test_observe_solute_calculates_if_absent(self):
        flux = self.meta.observe_solute(self.df, 'flux')
        expected = self.df['Conc'].values * self.df['Q'].values * self.meta.flux_conc_factor()
        np.testing.assert_allclose(flux, expected)

    def test_observe_solute_prefers_existing_column(self):
        meta = Metadata(dates='Date', constituent='Conc', flow='Q', flux='Load')
        df = self.df.copy()
        df['Load'] = 1.0
        np.testing.assert_array_equal(meta.observe_solute(df, 'flux'), np.ones(len(df)))
        # calculate=True ignores the stored column
        self.assertFalse(np.allclose(meta.observe_solute(df, 'flux', calculate=True), 1.0))

    def test_observe_solute_conc_from_flux(self):
        meta = Metadata(dates='Date', constituent='Conc', flow='Q', flux='Load')
        df = self.df.copy()
        df['Load'] = meta.observe_solute(df, 'flux', calculate=True)
        df = df.drop(columns='Conc')
        np.testing.assert_allclose(meta.observe_solute(df, 'conc'), self.df['Conc'].values)

    def test_format_round_trip(self):
        conc = np.array([0.5, 1.0, 2.0, 4.0, 8.0, 16.0])
        flux = self.meta.format_preds(conc, 'conc', 'flux', self.df)
        back = self.meta.format_preds(flux, 'flux', 'conc', self.df)
        np.testing.assert_allclose(back, conc, rtol=1e-12)

    def test_format_same_is_identity(self):
        preds = np.array([1.0, 2.0])
        np.testing.assert_array_equal(self.meta.format_preds(preds, 'conc', 'concentration', self.df.iloc[:2]), preds)

    def test_format_needs_discharge(self):
        meta = Metadata(dates='Date', constituent='Conc')
        with self.assertRaises(ValueError):
            meta.format_preds(np.ones(6), 'conc', 'flux', self.df)

    def test_match_format(self):
        self.assertEqual(match_format('Concentration'), 'conc')
        self.assertEqual(match_format('flux'), 'flux')
        with self.assertRaises(ValueError):
            match_format('load')
        with self.assertRaises(ValueError):
            match_format(None)


if __name__ == '__main__':
    unittest.main()
