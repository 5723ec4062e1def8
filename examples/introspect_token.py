import os
import sys

# Add src to path for running directly
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from anyio import create_task_group, run

from coreason_introspection import (
    CoreasonIntrospectionError,
    OpenTelemetryMetricsCollector,
    TokenInfoServiceClientBuilder,
)


def introspect_blocking(token: str) -> None:
    """
    Asks the configured endpoint once with the blocking client.

    Needs `COREASON_INTROSPECTION_ENDPOINT`, optionally `COREASON_INTROSPECTION_FALLBACK_ENDPOINT`.
    """
    print(">>> Blocking client (Plan B endpoint from env)")
    with TokenInfoServiceClientBuilder.plan_b_from_env().build() as client:
        try:
            info = client.introspect_with_retry(token)
            print(f"    {info}")
        except CoreasonIntrospectionError as e:
            print(f"    Introspection failed: {e}")


async def introspect_concurrently(tokens: list[str]) -> None:
    """
    Introspects several tokens against Google's tokeninfo endpoint at once.
    Metrics go to the global OpenTelemetry meter provider.
    """
    print(">>> Async client (Google v3)")
    builder = TokenInfoServiceClientBuilder.google_v3()
    async with builder.build_async(metrics_collector=OpenTelemetryMetricsCollector()) as client:

        async def one(token: str) -> None:
            try:
                info = await client.introspect_with_retry(token, budget=1.0)
                print(f"    {info}")
            except CoreasonIntrospectionError as e:
                print(f"    Introspection failed: {e}")

        async with create_task_group() as tg:
            for token in tokens:
                tg.start_soon(one, token)


def introspect_in_background(tokens: list[str]) -> None:
    """Submits tokens from blocking code to a client running its own event loop."""
    print(">>> Background client (Google v3)")
    with TokenInfoServiceClientBuilder.google_v3().build_background() as client:
        futures = [client.submit(token) for token in tokens]
        for future in futures:
            try:
                print(f"    {future.result()}")
            except CoreasonIntrospectionError as e:
                print(f"    Introspection failed: {e}")


if __name__ == "__main__":
    tokens = sys.argv[1:] or ["ya29.not-a-real-token"]

    if os.getenv("COREASON_INTROSPECTION_ENDPOINT"):
        introspect_blocking(tokens[0])
    run(introspect_concurrently, tokens)
    introspect_in_background(tokens)
