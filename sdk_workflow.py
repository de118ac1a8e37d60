# sdk_workflow.py
# Every official SDK's test suite, run against one search-server image.
# If any of these fail, the engine team should make sure the breaking changes
# are expected and contact the integration team.
from __future__ import annotations
from sdkcompat import wf, sdk


def workflow():
    return wf(
        # JS client: unit tests, build, then one smoke test per runtime
        sdk(
            "meilisearch-js",
            "meilisearch/meilisearch-js",
            "node",
            install=[("Install dependencies", "yarn --dev")],
            check=[
                ("Run ESM env", "yarn test:env:esm"),
                ("Run Node.js env", "yarn test:env:nodejs"),
                ("Run node typescript env", "yarn test:env:node-ts"),
                ("Run Browser env", "yarn test:env:browser"),
            ],
        ),

        sdk(
            "instant-meilisearch",
            "meilisearch/instant-meilisearch",
            "node",
            build=[("Build all the playgrounds and the packages", "yarn build")],
        ),

        # PHP client: the default HTTP client (Guzzle 7) suite
        sdk(
            "meilisearch-php",
            "meilisearch/meilisearch-php",
            "php",
            install=[
                ("Validate composer.json and composer.lock", "composer validate"),
                (
                    "Remove php-cs-fixer",
                    "composer remove --dev friendsofphp/php-cs-fixer --no-update --no-interaction",
                ),
                ("Install dependencies", "composer update --prefer-dist --no-progress"),
            ],
            test=[
                ("Run test suite - default HTTP client (Guzzle 7)", "sh scripts/tests.sh"),
                (
                    "Remove Guzzle",
                    "composer remove --dev guzzlehttp/guzzle http-interop/http-factory-guzzle",
                ),
            ],
        ),

        sdk(
            "meilisearch-python",
            "meilisearch/meilisearch-python",
            "python",
            test=[("Test with pytest", "pipenv run pytest")],
        ),

        sdk(
            "meilisearch-go",
            "meilisearch/meilisearch-go",
            "go",
        ),

        sdk(
            "meilisearch-ruby",
            "meilisearch/meilisearch-ruby",
            "ruby",
        ),

        # Cargo builds first so compile errors show up as the build step
        sdk(
            "meilisearch-rust",
            "meilisearch/meilisearch-rust",
            "rust",
        ),
    )
