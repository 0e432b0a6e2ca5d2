"""Example chaining two requests through an extracted variable.

Usage:
    python guides/chained_flow_example.py https://jsonplaceholder.typicode.com
"""

import asyncio
import logging
import sys

from apiflow import ApiflowConfig, Workbench


class PrintObserver:
    def step_started(self, index, step):
        print(f"-> {step.name}")

    def step_skipped(self, index, step):
        print(f"   skipped {step.name}")

    def step_completed(self, index, step, result):
        print(f"   {result.response.status} {result.extracted}")

    def run_finished(self, result):
        print(f"Run {result.status.value}")


async def main():
    logging.basicConfig(level=logging.INFO)
    config = ApiflowConfig()
    config.http.base_url = sys.argv[1] if len(sys.argv) > 1 else "https://jsonplaceholder.typicode.com"
    config.flows.seed_default = False

    bench = await Workbench.from_config(config, run_observer=PrintObserver())
    await bench.variables.set("postId", 1)

    flow = await bench.flows.create_flow(
        name="Post author",
        steps=[
            {
                "name": "Fetch post",
                "url": "/posts/{{postId}}",
                "extractVariables": [{"name": "userId", "path": "$.userId", "required": True}],
            },
            {
                "name": "Fetch author",
                "url": "/users/{{userId}}",
                "skipIf": "userId == 0",
                "extractVariables": [{"name": "authorEmail", "path": "email"}],
            },
        ],
    )

    await bench.run_flow(flow.id)
    print("authorEmail =", bench.variables.get("authorEmail"))
    await bench.aclose()


if __name__ == "__main__":
    asyncio.run(main())
