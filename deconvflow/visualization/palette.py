"""
Color palettes for cell types.

Palettes are plain mappings passed explicitly to whoever renders the
results, so that plots of several sections share the same colors.
"""

import logging

import matplotlib
import matplotlib.colors as mcolors
import numpy as np

logger = logging.getLogger('deconvflow.visualization.palette')


def _qualitative_colors(n_colors):
    """Hex colors from the matplotlib qualitative colormaps."""
    if n_colors <= 10:
        cmap = matplotlib.colormaps['tab10']
        return [mcolors.to_hex(cmap(i)) for i in range(n_colors)]
    if n_colors <= 20:
        cmap = matplotlib.colormaps['tab20']
        return [mcolors.to_hex(cmap(i)) for i in range(n_colors)]

    # Cycle through tab20, tab20b and tab20c, then fall back to hsv
    cmaps = [matplotlib.colormaps[name] for name in ('tab20', 'tab20b', 'tab20c')]
    colors = []
    for i in range(n_colors):
        cmap_idx = i // 20
        if cmap_idx < len(cmaps):
            colors.append(mcolors.to_hex(cmaps[cmap_idx](i % 20)))
        else:
            colors.append(mcolors.to_hex(matplotlib.colormaps['hsv'](i / n_colors)))
    return colors


def make_palette(cell_types, base=None, seed=None):
    """
    Build a cell type -> color mapping

    Parameters
    ----------
    cell_types : list
        Cell-type labels, in the order colors are assigned
    base : dict, optional
        Mapping of cell type to color. These entries are kept as given and
        their colors are not reused for other cell types
    seed : int, optional
        When given, generated colors are shuffled with
        ``numpy.random.default_rng(seed)``

    Returns
    -------
    dict
        Cell type -> hex color, in the order of ``cell_types``
    """
    base = dict(base or {})
    for cell_type, color in base.items():
        if not mcolors.is_color_like(color):
            raise ValueError(f"Invalid color {color!r} for cell type {cell_type!r}")

    cell_types = list(dict.fromkeys(cell_types))
    taken = {mcolors.to_hex(c) for c in base.values()}
    needed = [ct for ct in cell_types if ct not in base]

    candidates = [c for c in _qualitative_colors(len(needed) + len(taken)) if c not in taken]
    if seed is not None:
        rng = np.random.default_rng(seed)
        candidates = [candidates[i] for i in rng.permutation(len(candidates))]

    generated = dict(zip(needed, candidates))
    palette = {
        ct: mcolors.to_hex(base[ct]) if ct in base else generated[ct]
        for ct in cell_types
    }
    logger.debug(f"Palette with {len(palette)} colors ({len(needed)} generated)")
    return palette
