"""
===============================================================================
ASTROGATOR - Transfer Table
===============================================================================
Flattens an AstrogationModel into a pandas DataFrame, one row per
destination, for whatever renders the transfer list (the CLI prints it,
a UI binds to it, a CSV export writes it).

Columns
-------
    destination       name of the destination body or vessel
    kind              'body' or 'vessel'
    burn_time         ejection burn UT (s), NaN if infeasible
    time_until        seconds from now until the ejection burn
    ejection_dv       |ejection delta-V| (m/s)
    plane_change_dv   |plane-change delta-V| (m/s), NaN if none
    total_dv          ejection dV, plus the plane change when
                      AddPlaneChangeDeltaV is set
    state             TransferState name
    note              infeasibility or plane-change reason
    stale             burn time already passed
    active            currently selected transfer

The index is the transfer's position in the model's list, which is the
"position" sort order.
===============================================================================
"""

import logging
import math

import pandas as pd

from astrogator.core.settings import Settings, TransferSort
from astrogator.guidance.astrogation_model import AstrogationModel
from astrogator.simulation.host import HostSimulation

logger = logging.getLogger(__name__)

COLUMNS = [
    'destination', 'kind', 'burn_time', 'time_until', 'ejection_dv',
    'plane_change_dv', 'total_dv', 'state', 'note', 'stale', 'active',
]

_SORT_COLUMNS = {
    TransferSort.NAME: 'destination',
    TransferSort.TIME: 'time_until',
    TransferSort.DELTA_V: 'total_dv',
}


def transfer_table(model: AstrogationModel, host: HostSimulation,
                   settings: Settings) -> pd.DataFrame:
    """
    Build the transfer table for the model's current state.

    Parameters
    ----------
    model : AstrogationModel
    host : HostSimulation
        Supplies the current time for ``time_until`` and ``stale``.
    settings : Settings
        ``add_plane_change_delta_v`` decides what ``total_dv`` includes.

    Returns
    -------
    pd.DataFrame
        One row per transfer, indexed by list position.
    """
    now = host.universal_time()
    active = model.active_transfer
    rows = []
    for transfer in model.transfers:
        ejection = transfer.ejection_burn
        plane_change = transfer.plane_change_burn
        total = transfer.total_delta_v(settings.add_plane_change_delta_v)

        if transfer.infeasibility is not None:
            note = transfer.infeasibility.value
        else:
            note = transfer.plane_change_reason

        rows.append({
            'destination': transfer.destination.name,
            'kind': transfer.destination.kind.name.lower(),
            'burn_time': ejection.time if ejection is not None else math.nan,
            'time_until': ejection.time_until(now) if ejection is not None else math.nan,
            'ejection_dv': ejection.total_delta_v if ejection is not None else math.nan,
            'plane_change_dv': (plane_change.total_delta_v
                                if plane_change is not None else math.nan),
            'total_dv': total if total is not None else math.nan,
            'state': transfer.state.name,
            'note': note,
            'stale': transfer.is_stale(now),
            'active': transfer is active,
        })

    df = pd.DataFrame(rows, columns=COLUMNS)
    df.index.name = 'position'
    logger.debug("Transfer table: %d row(s)", len(df))
    return df


def sort_transfers(df: pd.DataFrame, order: TransferSort = TransferSort.POSITION,
                   descending: bool = False) -> pd.DataFrame:
    """
    Order a transfer table.  Infeasible rows (NaN times or delta-V) always
    sort last, whichever direction is requested.
    """
    if order is TransferSort.POSITION:
        return df.sort_index(ascending=not descending)
    column = _SORT_COLUMNS[order]
    if order is TransferSort.NAME:
        return df.sort_values(column, ascending=not descending,
                              key=lambda s: s.str.lower(), kind='mergesort')
    return df.sort_values(column, ascending=not descending,
                          na_position='last', kind='mergesort')


def build_sorted_table(model: AstrogationModel, host: HostSimulation,
                       settings: Settings) -> pd.DataFrame:
    """Transfer table ordered by the user's sort settings."""
    return sort_transfers(transfer_table(model, host, settings),
                          settings.transfer_sort, settings.descending_sort)
