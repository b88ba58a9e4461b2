"""
Processamento em lotes de tamanho fixo com pausa entre lotes.

Cada lote é executado concorrentemente e aguardado por completo (sucessos e
falhas) antes do próximo começar. A pausa fixa serve apenas para ficar abaixo
do limite de requisições da API; não há ajuste dinâmico.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

import settings


@dataclass
class BatchResult:
    total_processed: int = 0
    successful: List[Any] = field(default_factory=list)
    failed: List[Any] = field(default_factory=list)

    @property
    def successful_count(self) -> int:
        return len(self.successful)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def success_rate(self) -> float:
        if self.total_processed == 0:
            return 0.0
        return self.successful_count / self.total_processed * 100

    @property
    def success_rate_label(self) -> str:
        return f"{self.success_rate:.2f}%"

    def summary(self) -> Dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "successful": self.successful_count,
            "failed": self.failed_count,
            "success_rate": self.success_rate_label,
        }


def chunked(items: Sequence, size: int) -> List[Sequence]:
    if size < 1:
        raise ValueError(f"Batch size must be at least 1 (got {size})")
    return [items[i:i + size] for i in range(0, len(items), size)]


async def run_in_batches(
    items: Sequence,
    worker: Callable[[Any], Awaitable[Any]],
    batch_size: int = settings.BATCH_SIZE,
    delay_ms: int = settings.BATCH_DELAY_MS,
    on_error: Optional[Callable[[Any, BaseException], Any]] = None,
    fatal: Tuple[type, ...] = (),
    description: str = "Processing",
    show_progress: bool = True,
) -> BatchResult:
    """
    Executa `worker` para cada item, `batch_size` por vez.

    O resultado de cada worker precisa ter o atributo `success`. Exceções
    levantadas pelo worker viram um resultado de falha através de `on_error`;
    sem `on_error`, ou quando a exceção é de um dos tipos em `fatal`, ela é
    propagada depois que o lote termina.
    """
    batches = chunked(items, batch_size)
    result = BatchResult(total_processed=len(items))
    logging.info(f"🔄 {description}: {len(items)} items in batches of {batch_size}")

    with tqdm(total=len(items), desc=description, unit="rec", disable=not show_progress) as progress:
        for batch_number, batch in enumerate(batches, start=1):
            logging.info(f"📦 Processing batch {batch_number}/{len(batches)} ({len(batch)} records)")
            outcomes = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)

            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if on_error is None or isinstance(outcome, fatal) or not isinstance(outcome, Exception):
                        raise outcome
                    logging.error(f"❌ Unexpected error while processing item: {outcome}")
                    outcome = on_error(item, outcome)
                if outcome.success:
                    result.successful.append(outcome)
                else:
                    result.failed.append(outcome)
            progress.update(len(batch))

            if batch_number < len(batches) and delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

    logging.info(
        f"🏁 {description} complete: {result.successful_count} successful, "
        f"{result.failed_count} failed ({result.success_rate_label} success rate)"
    )
    return result
