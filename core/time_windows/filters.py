"""
Time Window Filtering Utilities

Helpers for normalising timestamp columns of fetched DataFrames.
"""

import pandas as pd


def coerce_utc_columns(df: pd.DataFrame, columns) -> pd.DataFrame:
    """
    Convert the given columns to tz-aware UTC datetimes.

    Unparseable values become NaT. Missing columns are added as all-NaT.
    """
    df = df.copy()
    for column in columns:
        if column not in df.columns:
            df[column] = pd.NaT
        df[column] = pd.to_datetime(df[column], errors='coerce', utc=True)
    return df
