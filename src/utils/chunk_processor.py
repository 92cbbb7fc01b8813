"""
Chunked scanning and combining of large claims files
"""
import pandas as pd
import logging
from typing import Callable, Iterator, Optional, List
import pyarrow.dataset as ds
from config.settings import CHUNK_SIZE

logger = logging.getLogger(__name__)

class ChunkProcessor:
    def __init__(self, chunk_size: int = CHUNK_SIZE):
        self.chunk_size = chunk_size

    def scan_dataset_chunks(self,
                            dataset: ds.Dataset,
                            filter_expression: Optional[ds.Expression] = None,
                            columns: Optional[List[str]] = None) -> Iterator[pd.DataFrame]:
        """
        Stream an opened Arrow dataset in record batches.

        The filter and column projection are evaluated by the Arrow scanner, so
        only matching rows are ever converted to pandas.
        """
        scanner = dataset.scanner(columns=columns, filter=filter_expression, batch_size=self.chunk_size)
        kept_rows = 0
        for batch in scanner.to_batches():
            if batch.num_rows == 0:
                continue
            kept_rows += batch.num_rows
            yield batch.to_pandas()

        logger.info(f"Scan kept {kept_rows:,} rows")

    def process_chunks(self,
                       chunks: Iterator[pd.DataFrame],
                       transform_func: Callable[[pd.DataFrame], pd.DataFrame],
                       empty: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """Transform each chunk and concatenate; errors propagate"""
        results = []
        for n, chunk in enumerate(chunks, start=1):
            results.append(transform_func(chunk))
            if n % 10 == 0:
                logger.info(f"Transformed {n} chunks ({sum(len(r) for r in results):,} rows so far)")

        if not results:
            logger.warning("Scan produced no chunks - result is empty")
            return empty if empty is not None else pd.DataFrame()

        combined = pd.concat(results, ignore_index=True)
        logger.info(f"Combined {len(results)} chunks into {len(combined):,} rows")
        return combined
