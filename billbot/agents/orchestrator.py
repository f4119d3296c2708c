from __future__ import annotations

import asyncio
import contextlib
import inspect
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable
from uuid import uuid4

from loguru import logger

from billbot.agents.iteration import IterationController
from billbot.agents.tools import (
    TOOLS,
    is_search_tool,
    lookup_details,
    parse_search_arguments,
    search_type,
    summarize_results,
)
from billbot.config import settings
from billbot.errors import (
    BillBotError,
    CancellationError,
    ModelProviderError,
    RetrievalError,
    ValidationError,
)
from billbot.llm_client import MessageResponse, ToolUseBlock, client as llm_client, get_model
from billbot.models.events import EndStatus, EventType, StreamEvent
from billbot.models.results import SearchFilters
from billbot.models.schemas import ChatRequest
from billbot.models.session import (
    CompletionReason,
    SearchIteration,
    SearchSession,
    ToolCallRecord,
    utc_now_iso,
)
from billbot.search.citations import CitationBuilder
from billbot.search.client import RankedSearchClient
from billbot.search.merger import ResultMerger
from billbot.services import logger as log_service
from billbot.services import streaming
from billbot.services.prompt_store import render_prompt
from billbot.services.registry import SessionHandle


@dataclass
class _Run:
    """Per-session working state. Never shared between sessions."""

    handle: SessionHandle
    session: SearchSession
    controller: IterationController
    merger: ResultMerger
    model: str
    temperature: float | None
    default_filters: SearchFilters
    message_id: str = field(default_factory=lambda: f"msg_{uuid4().hex[:12]}")
    started: float = field(default_factory=time.monotonic)
    deadline: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class RetrievalOrchestrator:
    """Drives one chat session: model turns, ranked-search rounds and streamed events.

    Flow per session:
      1. emit ``start``
      2. stream a model turn; run each requested tool call in order
      3. after every search round, merge results, ask the IterationController
         whether to stop, and emit a citation for every new result
      4. when retrieval is done, stream one final answer turn with tools disabled
      5. emit ``end`` (always last)

    Stop requests, disconnects and the request time budget are checked before
    and raced against every blocking step.
    """

    def __init__(
        self,
        search_client: RankedSearchClient | None = None,
        llm: Any | None = None,
        *,
        citation_builder: CitationBuilder | None = None,
        max_model_turns: int | None = None,
        request_timeout: float | None = None,
        final_answer_on_done: bool | None = None,
        lookup=lookup_details,
    ):
        self.search_client = search_client or RankedSearchClient()
        self.llm = llm
        self.citations = citation_builder or CitationBuilder()
        self.max_model_turns = max_model_turns or settings.max_model_turns
        self.request_timeout = request_timeout or settings.request_timeout_seconds
        self.final_answer_on_done = (
            settings.final_answer_on_done if final_answer_on_done is None else final_answer_on_done
        )
        self.lookup = lookup

    # --- Guards ---

    @staticmethod
    def _check(run: _Run) -> None:
        handle = run.handle
        if handle.cancelled:
            raise CancellationError(reason=handle.stop_reason or "user_abort")
        if not handle.stream.is_open():
            raise CancellationError("Client disconnected", reason="disconnected")
        if time.monotonic() >= run.deadline:
            raise CancellationError("Request timed out", reason="timeout")

    async def _guard(self, run: _Run, aw: Awaitable[Any]) -> Any:
        """Await ``aw`` unless the session is cancelled or out of time first."""
        try:
            self._check(run)
        except CancellationError:
            if inspect.iscoroutine(aw):
                aw.close()
            raise

        task = asyncio.ensure_future(aw)
        stop_wait = asyncio.ensure_future(run.handle.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, stop_wait},
                timeout=max(run.deadline - time.monotonic(), 0.0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            stop_wait.cancel()

        if task in done:
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
        self._check(run)
        raise CancellationError("Request timed out", reason="timeout")

    def _emit(self, run: _Run, event: StreamEvent) -> None:
        handle = run.handle
        if handle.cancelled and event.event not in (EventType.ERROR, EventType.END):
            raise CancellationError(reason=handle.stop_reason or "user_abort")
        if not handle.stream.emit(event) and handle.stream.disconnected:
            raise CancellationError("Client disconnected", reason="disconnected")

    # --- Model turns ---

    async def _stream_turn(
        self,
        run: _Run,
        system: str,
        messages: list[dict[str, Any]],
        *,
        tool_choice: str = "auto",
    ) -> MessageResponse:
        active_client = self.llm or llm_client()
        t0 = time.monotonic()
        try:
            async with active_client.messages.stream(
                model=run.model,
                max_tokens=settings.openrouter_max_tokens,
                system=system,
                messages=messages,
                tools=TOOLS,
                tool_choice=tool_choice,
                temperature=run.temperature,
            ) as turn:
                async for text in turn.text_stream:
                    self._check(run)
                    self._emit(run, streaming.content(text, run.message_id))
                response = await turn.get_final_message()
        except ModelProviderError as exc:
            log_service.log_llm_call(
                model=run.model,
                caller="chat",
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=exc.code,
            )
            raise

        usage = response.usage
        run.input_tokens += usage.input_tokens
        run.output_tokens += usage.output_tokens
        if usage.cost is not None:
            run.cost = (run.cost or 0.0) + usage.cost
        log_service.log_llm_call(
            model=run.model,
            caller="chat",
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return response

    # --- Tool calls ---

    def _tool_result(self, block: ToolUseBlock, content: str, *, is_error: bool = False) -> dict[str, Any]:
        result: dict[str, Any] = {"type": "tool_result", "tool_use_id": block.id, "content": content}
        if is_error:
            result["is_error"] = True
        return result

    async def _execute_tool(self, run: _Run, block: ToolUseBlock) -> dict[str, Any]:
        record = ToolCallRecord(id=block.id, name=block.name, arguments=dict(block.input))
        self._emit(run, streaming.tool_call(record))

        if is_search_tool(block.name):
            try:
                return await self._run_search(run, block, record)
            except (CancellationError, RetrievalError):
                raise
            except Exception as exc:
                logger.exception(f"Search tool {block.name} failed: {exc}")
                if not record.finalized:
                    record.fail("Search failed")
                    self._emit(run, streaming.tool_call(record))
                return self._tool_result(block, "Search failed", is_error=True)

        if block.name in ("get_bill_details", "get_executive_action_details"):
            try:
                text, row = await self._guard(run, self.lookup(block.name, block.input))
            except CancellationError:
                raise
            except (ValidationError, LookupError) as exc:
                message = exc.message if isinstance(exc, BillBotError) else str(exc)
                record.fail(message)
                self._emit(run, streaming.tool_call(record))
                return self._tool_result(block, message, is_error=True)
            except Exception as exc:
                logger.exception(f"Detail lookup {block.name} failed: {exc}")
                record.fail("Lookup failed")
                self._emit(run, streaming.tool_call(record))
                return self._tool_result(block, "Lookup failed", is_error=True)
            record.complete(f"Fetched {row.get('title') or 'record'}")
            self._emit(run, streaming.tool_call(record, result=row))
            return self._tool_result(block, text)

        message = f"Unknown tool: {block.name}"
        logger.warning(message)
        record.fail(message)
        self._emit(run, streaming.tool_call(record))
        return self._tool_result(block, message, is_error=True)

    def _accumulated_scores(self, run: _Run) -> list[float]:
        return [r.composite_score for r in run.merger.accumulated]

    async def _run_search(self, run: _Run, block: ToolUseBlock, record: ToolCallRecord) -> dict[str, Any]:
        controller = run.controller
        if controller.done:
            record.fail("search_complete")
            self._emit(run, streaming.tool_call(record))
            reason = controller.reason.value if controller.reason else "done"
            return self._tool_result(
                block, render_prompt("chat.search_complete_message", reason=reason), is_error=True
            )

        try:
            requested = parse_search_arguments(block.name, block.input, defaults=run.default_filters)
        except ValidationError as exc:
            record.fail(exc.message)
            self._emit(run, streaming.tool_call(record))
            return self._tool_result(block, exc.message, is_error=True)

        iteration = controller.next_iteration
        request, strategy = controller.refine(requested)
        kind_label = search_type(request.kinds)
        started_at = utc_now_iso()
        t0 = time.monotonic()

        try:
            page = await self._guard(run, self.search_client.search(request))
        except RetrievalError as exc:
            duration_ms = int((time.monotonic() - t0) * 1000)
            decision = controller.fail(iteration, exc, self._accumulated_scores(run))
            run.session.record(
                SearchIteration(
                    index=iteration,
                    request=request,
                    strategy=strategy,
                    result_count=0,
                    new_count=0,
                    cumulative_count=len(run.merger),
                    duration_ms=duration_ms,
                    started_at=started_at,
                    failed=True,
                )
            )
            log_service.log_search_iteration(
                run.session.session_id,
                iteration,
                strategy.value,
                0,
                0,
                len(run.merger),
                duration_ms,
                decision=f"failed:{exc.reason}",
            )
            record.fail(exc.message)
            self._emit(
                run,
                streaming.tool_call(record, iteration=iteration, search_type=kind_label, result_count=0),
            )
            if not exc.recoverable:
                raise
            logger.warning(f"Search round {iteration} failed ({exc.reason}); decision={decision.state.value}")
            return self._tool_result(block, f"Search failed: {exc.message}", is_error=True)

        outcome = run.merger.merge(page.results)
        decision = controller.evaluate(iteration, outcome.new_count, self._accumulated_scores(run))
        duration_ms = int((time.monotonic() - t0) * 1000)
        run.session.record(
            SearchIteration(
                index=iteration,
                request=request,
                strategy=strategy,
                result_count=len(page),
                new_count=outcome.new_count,
                cumulative_count=outcome.total,
                duration_ms=duration_ms,
                started_at=started_at,
            )
        )
        log_service.log_search_iteration(
            run.session.session_id,
            iteration,
            strategy.value,
            len(page),
            outcome.new_count,
            outcome.total,
            duration_ms,
            decision=(decision.reason or decision.next_strategy).value,
        )

        record.complete(f"{len(page)} results, {outcome.new_count} new")
        self._emit(
            run,
            streaming.tool_call(
                record,
                result={
                    "result_count": len(page),
                    "new_count": outcome.new_count,
                    "total_results": outcome.total,
                    "strategy": strategy.value,
                },
                iteration=iteration,
                search_type=kind_label,
                result_count=len(page),
            ),
        )

        # Rank is the position in the session-wide ordering after this merge.
        ranks = {r.key: i for i, r in enumerate(outcome.accumulated, 1)}
        for result in outcome.new:
            item = self.citations.build(
                result,
                request.query,
                iteration,
                ranks[result.key],
                searched_at=started_at,
            )
            self._emit(run, streaming.citation(item))

        return self._tool_result(
            block,
            summarize_results(page.results, new_count=outcome.new_count, total=outcome.total),
        )

    # --- Session ---

    async def _converse(self, run: _Run, request: ChatRequest) -> None:
        controller = run.controller
        system = render_prompt(
            "chat.system_prompt",
            today=date.today().isoformat(),
            max_iterations=controller.max_iterations,
        )
        messages: list[dict[str, Any]] = [{"role": "user", "content": request.message}]

        for _ in range(self.max_model_turns):
            response = await self._guard(run, self._stream_turn(run, system, messages))
            tool_uses = response.tool_uses
            if not tool_uses:
                return

            messages.append({"role": "assistant", "content": response.content})
            tool_results = []
            for block in tool_uses:
                self._check(run)
                tool_results.append(await self._execute_tool(run, block))
            messages.append({"role": "user", "content": tool_results})

            if controller.done:
                if self.final_answer_on_done:
                    messages.append(
                        {
                            "role": "user",
                            "content": render_prompt(
                                "chat.final_answer_prompt",
                                reason=controller.reason.value,
                                iterations=controller.iteration,
                                result_count=len(run.merger),
                            ),
                        }
                    )
                    await self._guard(run, self._stream_turn(run, system, messages, tool_choice="none"))
                return

        logger.warning(f"Session {run.session.session_id} used all {self.max_model_turns} model turns")
        controller.finish(CompletionReason.MAX_ITERATIONS)

    async def run(self, request: ChatRequest, handle: SessionHandle) -> SearchSession:
        """Run one chat session to completion, streaming events to ``handle.stream``.

        Always ends with exactly one ``end`` event unless the transport is already gone.
        """
        options = request.options
        controller = IterationController(max_iterations=options.max_iterations)
        session = SearchSession(session_id=handle.session_id, original_query=request.message)
        handle.search_session = session
        run = _Run(
            handle=handle,
            session=session,
            controller=controller,
            merger=ResultMerger(),
            model=options.model or get_model(),
            temperature=options.temperature,
            default_filters=options.filters.to_filters() if options.filters else SearchFilters(),
        )
        run.deadline = run.started + self.request_timeout

        log_service.log_event(
            event_type="chat_started",
            message="Chat session started",
            session_id=handle.session_id,
            connection_id=handle.connection_id,
            model=run.model,
            query=request.message[:100],
        )

        status = EndStatus.COMPLETED
        try:
            self._emit(run, streaming.start(handle.session_id, run.message_id))
            await self._converse(run, request)
            if not controller.done:
                # The model answered before the controller stopped retrieval.
                controller.finish(CompletionReason.SUFFICIENT_RESULTS)
        except CancellationError as exc:
            if exc.reason == "timeout":
                logger.warning(f"Session {handle.session_id} exceeded {self.request_timeout:.0f}s")
                status = EndStatus.ERROR
                controller.finish(CompletionReason.ERROR)
                self._safe_emit(
                    run,
                    streaming.error(
                        "Request timed out",
                        code="REQUEST_TIMEOUT",
                        recoverable=True,
                    ),
                )
            else:
                logger.info(f"Session {handle.session_id} stopped ({exc.reason})")
                status = EndStatus.STOPPED
                controller.abort()
        except asyncio.CancelledError:
            status = EndStatus.STOPPED
            controller.abort()
            raise
        except BillBotError as exc:
            logger.error(f"Session {handle.session_id} failed: [{exc.code}] {exc.message}")
            status = EndStatus.ERROR
            controller.finish(CompletionReason.ERROR)
            self._safe_emit(run, streaming.error_from(exc))
        except Exception as exc:
            logger.exception(f"Session {handle.session_id} crashed: {exc}")
            status = EndStatus.ERROR
            controller.finish(CompletionReason.ERROR)
            self._safe_emit(run, streaming.error("An internal error occurred", code="INTERNAL_ERROR"))
        finally:
            session.seal(controller.reason or CompletionReason.ERROR)
            self._safe_emit(
                run,
                streaming.end(
                    run.message_id,
                    status,
                    run.duration_ms,
                    total_tokens=run.total_tokens,
                    cost=run.cost,
                ),
            )
            handle.stream.close()
            log_service.log_event(
                event_type="chat_finished",
                message="Chat session finished",
                session_id=handle.session_id,
                status=status.value,
                completion_reason=session.completion_reason.value if session.completion_reason else None,
                iterations=len(session.iterations),
                total_results=session.total_results,
                duration_ms=run.duration_ms,
            )
        return session

    @staticmethod
    def _safe_emit(run: _Run, event: StreamEvent) -> None:
        if run.handle.stream.is_open():
            run.handle.stream.emit(event)
