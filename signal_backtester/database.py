"""Async SQLite storage powered by SQLAlchemy."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from signal_backtester.config import BacktestSettings
from signal_backtester.models import AuxAction, BacktestResult, ParsedSignal, SignalAction


class Base(DeclarativeBase):
    """Base declarative class for ORM models."""


class SignalORM(Base):
    __tablename__ = "signals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    timestamp: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)  # naive UTC
    channel: Mapped[str] = mapped_column(String, default="", nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str | None] = mapped_column(String, nullable=True)
    symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    entry: Mapped[str] = mapped_column(String, nullable=False)
    stop_loss: Mapped[float | None] = mapped_column(Float, nullable=True)
    take_profits_json: Mapped[str] = mapped_column(Text, default="{}", nullable=False)
    actions_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    hash: Mapped[str] = mapped_column(String, unique=True, nullable=False)


class BacktestRunORM(Base):
    __tablename__ = "backtest_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    channel: Mapped[str | None] = mapped_column(String, nullable=True)
    settings_json: Mapped[str] = mapped_column(Text, nullable=False)
    total_trades: Mapped[int] = mapped_column(Integer, nullable=False)
    win_rate: Mapped[float] = mapped_column(Float, nullable=False)
    total_pnl: Mapped[float] = mapped_column(Float, nullable=False)
    max_drawdown: Mapped[float] = mapped_column(Float, nullable=False)


class BacktestTradeORM(Base):
    __tablename__ = "backtest_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("backtest_runs.id"), nullable=False, index=True)
    trade_no: Mapped[int] = mapped_column(Integer, nullable=False)
    symbol: Mapped[str] = mapped_column(String, nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    channel: Mapped[str] = mapped_column(String, default="", nullable=False)
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    entry_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    stop_loss: Mapped[float | None] = mapped_column(Float, nullable=True)
    take_profit: Mapped[float | None] = mapped_column(Float, nullable=True)
    exit_price: Mapped[float] = mapped_column(Float, nullable=False)
    exit_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    exit_reason: Mapped[str] = mapped_column(String, nullable=False)
    pnl: Mapped[float] = mapped_column(Float, nullable=False)


@dataclass(slots=True)
class BacktestRunRecord:
    id: int
    created_at: datetime
    start_date: datetime
    end_date: datetime
    symbol: str | None
    channel: str | None
    total_trades: int
    win_rate: float
    total_pnl: float
    max_drawdown: float


@dataclass(slots=True)
class BacktestTradeRecord:
    id: int
    run_id: int
    trade_no: int
    symbol: str
    direction: str
    channel: str
    entry_price: float
    entry_time: datetime
    stop_loss: float | None
    take_profit: float | None
    exit_price: float
    exit_time: datetime
    exit_reason: str
    pnl: float


def _to_storage(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo, so aware values are stored as naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_storage(value: datetime | None, reference: datetime | None) -> datetime | None:
    """Give stored times the timezone of the query bounds they are compared with."""
    if value is None or reference is None or reference.tzinfo is None:
        return value
    return value.replace(tzinfo=UTC).astimezone(reference.tzinfo)


def _to_signal(row: SignalORM, reference: datetime | None = None) -> ParsedSignal:
    return ParsedSignal(
        action=SignalAction(row.action) if row.action else None,
        symbol=row.symbol,
        entry=row.entry,
        stop_loss=row.stop_loss,
        take_profits=json.loads(row.take_profits_json or "{}"),
        actions=frozenset(AuxAction(value) for value in json.loads(row.actions_json or "[]")),
        timestamp=_from_storage(row.timestamp, reference),
        channel=row.channel,
        raw_text=row.raw_text,
    )


def _to_run_record(row: BacktestRunORM) -> BacktestRunRecord:
    return BacktestRunRecord(
        id=row.id,
        created_at=row.created_at,
        start_date=row.start_date,
        end_date=row.end_date,
        symbol=row.symbol,
        channel=row.channel,
        total_trades=row.total_trades,
        win_rate=row.win_rate,
        total_pnl=row.total_pnl,
        max_drawdown=row.max_drawdown,
    )


class Database:
    """Persistence layer for parsed signals and backtest runs."""

    def __init__(self, db_path: str | Path = "data/signals.db") -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._engine: AsyncEngine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=False)
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def init_db(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    async def signal_hash_exists(self, signal_hash: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(SignalORM.id).where(SignalORM.hash == signal_hash).limit(1))
            return result.scalar_one_or_none() is not None

    async def add_signal(self, signal: ParsedSignal, signal_hash: str) -> int | None:
        """Insert a parsed signal. Returns None when the hash is already stored."""
        row = SignalORM(
            timestamp=_to_storage(signal.timestamp),
            channel=signal.channel,
            raw_text=signal.raw_text,
            action=signal.action.value if signal.action else None,
            symbol=signal.symbol,
            entry=signal.entry,
            stop_loss=signal.stop_loss,
            take_profits_json=json.dumps(signal.take_profits),
            actions_json=json.dumps(sorted(action.value for action in signal.actions)),
            hash=signal_hash,
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return None
            await session.refresh(row)
        return row.id

    async def count_signals(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count(SignalORM.id)))
            return int(result.scalar_one() or 0)

    async def list_signals(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        channel: str | None = None,
    ) -> list[ParsedSignal]:
        async with self._session_factory() as session:
            query = select(SignalORM).order_by(SignalORM.timestamp.asc(), SignalORM.id.asc())
            if start is not None:
                query = query.where(SignalORM.timestamp >= _to_storage(start))
            if end is not None:
                query = query.where(SignalORM.timestamp <= _to_storage(end))
            if channel is not None:
                query = query.where(SignalORM.channel == channel)
            result = await session.execute(query)
            rows = result.scalars().all()
        return [_to_signal(row, start or end) for row in rows]

    async def add_backtest_run(self, settings: BacktestSettings, result: BacktestResult) -> int:
        run = BacktestRunORM(
            start_date=_to_storage(settings.start_date),
            end_date=_to_storage(settings.end_date),
            symbol=settings.symbol,
            channel=settings.channel,
            settings_json=settings.model_dump_json(),
            total_trades=result.total_trades,
            win_rate=result.win_rate,
            total_pnl=result.total_pnl,
            max_drawdown=result.max_drawdown,
        )
        async with self._session_factory() as session:
            session.add(run)
            await session.flush()
            session.add_all(
                BacktestTradeORM(
                    run_id=run.id,
                    trade_no=trade.id,
                    symbol=trade.symbol,
                    direction=trade.direction.value,
                    channel=trade.channel,
                    entry_price=trade.entry_price,
                    entry_time=_to_storage(trade.entry_time),
                    stop_loss=trade.stop_loss,
                    take_profit=trade.take_profit,
                    exit_price=trade.exit_price,
                    exit_time=_to_storage(trade.exit_time),
                    exit_reason=trade.exit_reason.value,
                    pnl=trade.pnl,
                )
                for trade in result.trades
            )
            await session.commit()
            await session.refresh(run)
        return run.id

    async def get_backtest_run(self, run_id: int) -> BacktestRunRecord | None:
        async with self._session_factory() as session:
            row = await session.get(BacktestRunORM, run_id)
            if row is None:
                return None
            return _to_run_record(row)

    async def list_recent_runs(self, limit: int = 20) -> list[BacktestRunRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BacktestRunORM).order_by(desc(BacktestRunORM.created_at), desc(BacktestRunORM.id)).limit(limit)
            )
            rows = result.scalars().all()
        return [_to_run_record(row) for row in rows]

    async def list_run_trades(self, run_id: int) -> list[BacktestTradeRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BacktestTradeORM)
                .where(BacktestTradeORM.run_id == run_id)
                .order_by(BacktestTradeORM.exit_time.asc(), BacktestTradeORM.id.asc())
            )
            rows = result.scalars().all()
        return [
            BacktestTradeRecord(
                id=row.id,
                run_id=row.run_id,
                trade_no=row.trade_no,
                symbol=row.symbol,
                direction=row.direction,
                channel=row.channel,
                entry_price=row.entry_price,
                entry_time=row.entry_time,
                stop_loss=row.stop_loss,
                take_profit=row.take_profit,
                exit_price=row.exit_price,
                exit_time=row.exit_time,
                exit_reason=row.exit_reason,
                pnl=row.pnl,
            )
            for row in rows
        ]
