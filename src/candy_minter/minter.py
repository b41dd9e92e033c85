from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from solders.keypair import Keypair

from .candy_machine import ResolvedContract, mint_nft_instructions
from .errors import ConfigurationError, MintAttemptError
from .project_constants import (
    BALANCE_CHECK_INTERVAL_S,
    DEFAULT_MINT_CONCURRENCY,
    LAMPORTS_PER_SOL,
    MIN_BALANCE_SOL,
    MINT_ACCOUNT_SIZE,
    UNBOUNDED_PAUSE_EVERY,
    UNBOUNDED_PAUSE_S,
    UNLIMITED_MINT,
)
from .run_log import RunLog


class MintRpc(Protocol):
    async def get_balance(self, address: Any) -> int:
        ...

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        ...

    async def send_transaction(
        self, instructions: Sequence[Any], payer: Keypair, signers: Sequence[Keypair] = ...
    ) -> str:
        ...


class MintState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class MintAttempt:
    index: int
    success: bool
    tx: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BalanceSample:
    lamports: int
    taken_at: float

    @property
    def sol(self) -> float:
        return self.lamports / LAMPORTS_PER_SOL


class MintLoopDriver:
    """
    Mints against one candy machine, either a fixed count or until stopped.

    A balance guard samples the payer balance on an interval and sets
    ``stop`` once it falls below ``min_balance_sol``. Attempts that have not
    started when ``stop`` is set are skipped; in-flight ones finish.
    """

    def __init__(
        self,
        rpc: MintRpc,
        payer: Keypair,
        contract: ResolvedContract,
        log: RunLog,
        *,
        min_balance_sol: float = MIN_BALANCE_SOL,
        balance_interval_s: float = BALANCE_CHECK_INTERVAL_S,
        concurrency: int = DEFAULT_MINT_CONCURRENCY,
        pause_every: int = UNBOUNDED_PAUSE_EVERY,
        pause_s: float = UNBOUNDED_PAUSE_S,
    ) -> None:
        self.rpc = rpc
        self.payer = payer
        self.contract = contract
        self.log = log
        self.min_balance_sol = min_balance_sol
        self.balance_interval_s = balance_interval_s
        self.concurrency = max(1, int(concurrency))
        self.pause_every = max(1, int(pause_every))
        self.pause_s = pause_s

        self.state = MintState.IDLE
        self.stop = asyncio.Event()
        self.attempts: List[MintAttempt] = []
        self.samples: List[BalanceSample] = []
        self._balance_task: Optional[asyncio.Task] = None
        self._slots: Optional[asyncio.Semaphore] = None
        self._rent: Optional[int] = None
        self._inflight: Set[asyncio.Task] = set()

    async def check_balance(self) -> Optional[BalanceSample]:
        try:
            lamports = await self.rpc.get_balance(self.payer.pubkey())
        except Exception as e:
            self.log.err("[BALANCE] %s", e)
            return None
        sample = BalanceSample(lamports=lamports, taken_at=time.time())
        self.samples.append(sample)
        self.log.info("CURRENT BALANCE: %s sol", sample.sol)
        if sample.sol < self.min_balance_sol and not self.stop.is_set():
            self.log.info(
                "Insufficient balance (< %s), will end.", self.min_balance_sol
            )
            self.stop.set()
        return sample

    async def _balance_loop(self) -> None:
        while True:
            await asyncio.sleep(self.balance_interval_s)
            await self.check_balance()

    async def start_balance_guard(self) -> None:
        if self._balance_task is not None:
            return
        self._balance_task = asyncio.create_task(self._balance_loop())
        await self.check_balance()

    async def stop_balance_guard(self) -> None:
        task, self._balance_task = self._balance_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _rent_lamports(self) -> int:
        if self._rent is None:
            self._rent = await self.rpc.get_minimum_balance_for_rent_exemption(
                MINT_ACCOUNT_SIZE
            )
        return self._rent

    async def mint_one(self, index: int) -> MintAttempt:
        self.log.info("Mint #%d...", index)
        try:
            mint = Keypair()
            rent = await self._rent_lamports()
            instructions = mint_nft_instructions(
                self.contract, self.payer.pubkey(), mint, rent
            )
            signature = await self.rpc.send_transaction(instructions, self.payer, [mint])
        except Exception as e:
            self.log.err("[MINT] %s", MintAttemptError(index, e))
            return MintAttempt(index=index, success=False, error=str(e))
        self.log.tx(signature)
        return MintAttempt(index=index, success=True, tx=signature)

    def _skip(self, index: int) -> MintAttempt:
        self.log.info("Stopping, skip task #%d!", index)
        return MintAttempt(index=index, success=False, skipped=True)

    async def _bounded_attempt(self, index: int) -> MintAttempt:
        async with self._slots:
            if self.stop.is_set():
                return self._skip(index)
            return await self.mint_one(index)

    async def _unbounded_attempt(self, index: int) -> None:
        try:
            self.attempts.append(await self.mint_one(index))
        finally:
            self._slots.release()

    async def _run_bounded(self, count: int) -> None:
        self.log.info("Minting count: %d", count)
        results = await asyncio.gather(
            *(self._bounded_attempt(i) for i in range(count))
        )
        self.attempts.extend(results)

    async def _run_unbounded(self) -> None:
        self.log.info("!!!!! Infinite mint !!!!!")
        index = 0
        while True:
            if index % self.pause_every == 0:
                await asyncio.sleep(self.pause_s)
            await self._slots.acquire()
            if self.stop.is_set():
                self._slots.release()
                break
            task = asyncio.create_task(self._unbounded_attempt(index))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            index += 1
        self.log.info("Stop observed after %d attempts, waiting for in-flight mints", index)
        if self._inflight:
            await asyncio.gather(*self._inflight)

    async def run(self, count: int) -> List[MintAttempt]:
        if count < UNLIMITED_MINT:
            raise ConfigurationError(f"Invalid mint count: {count}")
        if self.state is not MintState.IDLE:
            raise RuntimeError("MintLoopDriver can only run once")

        self._slots = asyncio.Semaphore(self.concurrency)
        self.state = MintState.RUNNING
        await self.start_balance_guard()
        try:
            if count == UNLIMITED_MINT:
                await self._run_unbounded()
            else:
                await self._run_bounded(count)
        finally:
            await self.stop_balance_guard()

        self.state = MintState.STOPPED if self.stop.is_set() else MintState.COMPLETED
        self.attempts.sort(key=lambda a: a.index)
        ok = sum(1 for a in self.attempts if a.success)
        self.log.info(
            "Mint %s: %d attempts, %d succeeded", self.state.value, len(self.attempts), ok
        )
        self.log.info("Writing results...")
        path = self.log.write_results([a.to_dict() for a in self.attempts])
        self.log.info("Results written to %s", path)
        return self.attempts
