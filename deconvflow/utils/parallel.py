import logging
from functools import partial
from typing import Callable, List, Dict, Any, Mapping
import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from tqdm import tqdm

from deconvflow.analysis.curation import curate

logger = logging.getLogger('deconvflow.utils.parallel')

def parallelize(func: Callable, items: List[Any], n_jobs: int = -1,
               backend: str = 'processes', show_progress: bool = True,
               **kwargs) -> List[Any]:
    """
    Run a function in parallel over a list of items

    Parameters
    ----------
    func : callable
        Function to apply to each item. Must be picklable for the
        'processes' backend
    items : list
        List of items to process
    n_jobs : int, optional
        Number of parallel jobs. -1 means use all available cores
    backend : str, optional
        Backend to use. Options: 'processes', 'threads', 'serial'
    show_progress : bool, optional
        Whether to show a progress bar
    **kwargs
        Additional arguments to pass to func

    Returns
    -------
    List[Any]
        Results of applying func to each item, in input order
    """
    if backend not in ('processes', 'threads', 'serial'):
        raise ValueError(f"Unsupported backend: {backend}")
    if not items:
        return []
    if n_jobs <= 0:
        n_jobs = mp.cpu_count()
    n_jobs = min(n_jobs, len(items))

    logger.info(f"Running {len(items)} tasks with {n_jobs} parallel jobs using {backend} backend")

    bound = partial(func, **kwargs) if kwargs else func
    if backend == 'serial' or n_jobs == 1:
        iterator = tqdm(items, desc="Processing") if show_progress else items
        return [bound(item) for item in iterator]

    executor_cls = ProcessPoolExecutor if backend == 'processes' else ThreadPoolExecutor
    with executor_cls(max_workers=n_jobs) as executor:
        mapped = executor.map(bound, items)
        if show_progress:
            mapped = tqdm(mapped, total=len(items), desc="Processing")
        results = list(mapped)

    return results

def _curate_section(item, **kwargs):
    name, matrix = item
    return name, curate(matrix, **kwargs)

def curate_sections(matrices: Mapping[str, Any], n_jobs: int = 1,
                    backend: str = 'processes', show_progress: bool = False,
                    **kwargs) -> Dict[str, Any]:
    """
    Curate the contribution matrices of independent tissue sections

    Parameters
    ----------
    matrices : mapping
        Section name -> raw contribution matrix
    n_jobs : int, optional
        Number of parallel jobs. -1 means use all available cores
    backend : str, optional
        Backend to use. Options: 'processes', 'threads', 'serial'
    show_progress : bool, optional
        Whether to show a progress bar
    **kwargs
        Thresholds passed to ``curate``

    Returns
    -------
    dict
        Section name -> CurationResult, in input order
    """
    items = list(matrices.items())
    logger.info(f"Curating {len(items)} sections")
    results = parallelize(_curate_section, items, n_jobs=n_jobs, backend=backend,
                          show_progress=show_progress, **kwargs)
    return dict(results)
