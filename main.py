"""Bill Bot - Legislative Q&A

Simple CLI for running one chat session against the configured services.
"""

import argparse
import asyncio
import json
from uuid import uuid4

from billbot.agents.orchestrator import RetrievalOrchestrator
from billbot.models.schemas import ChatOptions, ChatRequest
from billbot.services.registry import SessionRegistry


async def run_chat(query: str, model: str | None = None, max_iterations: int | None = None):
    """Run one chat session and print its events as they arrive."""
    print(f"Question: {query}")
    print("-" * 50)

    registry = SessionRegistry()
    handle = await registry.create(f"cli_{uuid4().hex[:8]}", f"cli_{uuid4().hex[:8]}")
    request = ChatRequest(
        message=query,
        connection_id=handle.connection_id,
        session_id=handle.session_id,
        options=ChatOptions(model=model, max_iterations=max_iterations),
    )
    task = asyncio.create_task(RetrievalOrchestrator().run(request, handle))

    citations: list[dict] = []
    async for event in handle.stream.events():
        event_type = event.event.value
        data = event.data

        if event_type == "content":
            print(data.get("content", ""), end="", flush=True)

        elif event_type == "tool_call":
            status = data.get("status")
            meta = data.get("metadata", {})
            if status == "started":
                print(f"\n[~] {data.get('name')} {json.dumps(data.get('arguments', {}))}")
            elif status == "completed":
                print(
                    f"  [+] round {meta.get('iteration', '-')}: "
                    f"{meta.get('result_count', 0)} results in {meta.get('duration', 0)}ms"
                )
            else:
                print(f"  [!] {data.get('name')} failed: {data.get('error')}")

        elif event_type == "citation":
            citations.append(data)

        elif event_type == "error":
            print(f"\n[!] Error: {data.get('message', 'Unknown error')} ({data.get('code')})")

        elif event_type == "end":
            print(f"\n\n[*] Finished: {data.get('status')}")
            print(f"   Runtime: {data.get('duration')}ms")
            print(f"   Tokens: {data.get('total_tokens')}")

    session = await task
    await registry.remove(handle.session_id, handle)

    print(f"   Search rounds: {len(session.iterations)} ({session.completion_reason.value})")
    if citations:
        print(f"\n{'='*50}")
        print("SOURCES:")
        print(f"{'='*50}")
        for i, item in enumerate(citations, 1):
            print(f"{i}. {item['title']} [{item['relevance_score']}]")
            print(f"   {item['url']}")


def main():
    parser = argparse.ArgumentParser(description="Bill Bot legislative Q&A")
    parser.add_argument("query", help="Question about bills or executive actions")
    parser.add_argument("--model", "-m", help="OpenRouter model id (default: from config)")
    parser.add_argument("--max-iterations", "-n", type=int, help="Maximum search rounds (1-50)")

    args = parser.parse_args()

    asyncio.run(run_chat(args.query, args.model, args.max_iterations))


if __name__ == "__main__":
    main()
