"""
===============================================================================
ASTROGATOR - Transfer Window Chart
===============================================================================
Horizontal bar chart of upcoming transfer windows: one bar per destination
reaching from now to the ejection burn, coloured by total delta-V.
Infeasible transfers are listed with no bar and their reason as a label.
===============================================================================
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib import cm
from matplotlib.colors import Normalize

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 6.0 * 3600.0      # Kerbin day

COLORS = {
    'infeasible': '#95a5a6',
    'active': '#e74c3c',
    'text': '#2c3e50',
}


def plot_transfer_windows(table: pd.DataFrame, output_path: str,
                          title: Optional[str] = None) -> str:
    """
    Save a chart of the transfer table.

    Parameters
    ----------
    table : pd.DataFrame
        Output of ``transfer_table`` (optionally sorted).
    output_path : str
        PNG file to write.
    title : str, optional

    Returns
    -------
    str
        ``output_path``.
    """
    n_rows = max(len(table), 1)
    fig, ax = plt.subplots(figsize=(12, 1.0 + 0.45 * n_rows))

    feasible = table['time_until'].notna()
    dv = table.loc[feasible, 'total_dv']
    norm = Normalize(vmin=float(dv.min()) if len(dv) else 0.0,
                     vmax=float(dv.max()) if len(dv) else 1.0)
    cmap = matplotlib.colormaps['viridis']

    y = np.arange(len(table))
    for row_y, (_, row) in zip(y, table.iterrows()):
        if np.isnan(row['time_until']):
            ax.text(0.0, row_y, f"  {row['note']}", va='center', fontsize=8,
                    color=COLORS['infeasible'])
            continue
        days = max(row['time_until'], 0.0) / SECONDS_PER_DAY
        edge = COLORS['active'] if row['active'] else 'white'
        ax.barh(row_y, days, height=0.6, color=cmap(norm(row['total_dv'])),
                edgecolor=edge, linewidth=1.5 if row['active'] else 0.5)
        ax.text(days, row_y, f"  {row['total_dv']:.0f} m/s", va='center',
                fontsize=8, color=COLORS['text'])

    ax.set_yticks(y)
    ax.set_yticklabels(table['destination'].tolist())
    ax.invert_yaxis()
    ax.set_xlabel('Time until ejection burn (Kerbin days)')
    ax.set_title(title or 'Upcoming Transfer Windows', fontweight='bold')
    ax.grid(True, axis='x', alpha=0.3)

    if len(dv):
        mappable = cm.ScalarMappable(norm=norm, cmap=cmap)
        mappable.set_array([])
        fig.colorbar(mappable, ax=ax, label='Total $\\Delta V$ (m/s)')

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight',
                facecolor='white', edgecolor='none')
    plt.close(fig)
    logger.info("Saved transfer chart: %s", output_path)
    return output_path
