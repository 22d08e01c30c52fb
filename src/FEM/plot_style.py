import logging
from pathlib import Path

import matplotlib.pyplot as plt
import seaborn as sns

log = logging.getLogger(__name__)


def setup_style():
    """Apply shared matplotlib style."""
    sns.set_theme(style="whitegrid", palette="deep")
    plt.rcParams.setdefault("savefig.bbox", "tight")


def save_figure(fig, filename: str | Path):
    """
    Save figure to the specified path.
    """
    filepath = Path(filename)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(filepath, bbox_inches="tight")
    plt.close(fig)
    log.info(f"Saved: {filepath}")
    return filepath
