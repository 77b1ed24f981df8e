"""Per-session context: configuration, features, executor and reporter.

A SessionContext is created once per test session and passed to whatever
needs it; there is no process-wide instance.
"""

from __future__ import annotations

import logging

from flakeguard.api.client import ApiClient, RepositoryInfo
from flakeguard.bootstrap.cache import FeatureCache
from flakeguard.bootstrap.feature_set import FeatureSet, GitUploader, build_feature_set
from flakeguard.config import EngineConfig
from flakeguard.execution.executor import SessionExecutor
from flakeguard.execution.manifest import TestManifest
from flakeguard.features.efd import EarlyFlakeDetection
from flakeguard.features.tia import TestImpactAnalysis
from flakeguard.model import tags
from flakeguard.model.entities import TestSession
from flakeguard.reporting.reporter import SessionReporter

log = logging.getLogger(__name__)


class SessionContext:
    """Owns everything that lives for the duration of one session."""

    def __init__(
        self,
        config: EngineConfig,
        api: ApiClient | None = None,
        git_upload: GitUploader | None = None,
    ) -> None:
        self.config = config
        self._owns_api = api is None and config.api_url is not None
        if self._owns_api:
            api = ApiClient(
                config.api_url,
                RepositoryInfo(
                    service=config.service,
                    env=config.env,
                    repository_url=config.repository_url,
                    branch=config.branch,
                    commit_sha=config.commit_sha,
                    commit_message=config.commit_message,
                ),
                api_key=config.api_key,
                timeout=config.request_timeout,
            )
        self.api = api
        self.git_upload = git_upload
        self.features: FeatureSet | None = None
        self.reporter = SessionReporter()
        self._stopped = False

    def start(self) -> FeatureSet:
        """Build the feature chain. Calling it again returns the same set."""
        if self.features is None:
            log.debug("Starting feature setup (timeout %.1fs)", self.config.setup_timeout)
            cache = FeatureCache(self.config.cache_dir, self.config.cache_module)
            self.features = build_feature_set(
                self.config, api=self.api, cache=cache, git_upload=self.git_upload,
            )
            self.reporter.set_features(self.features.ids)
        return self.features

    def run(self, manifest: TestManifest) -> TestSession:
        """Execute ``manifest`` through the feature chain.

        Raises:
            RuntimeError: If the context was not started or was already stopped.
        """
        if self.features is None:
            raise RuntimeError("SessionContext.start() must be called before run()")
        if self._stopped:
            raise RuntimeError("SessionContext has been stopped")

        session = TestSession(manifest.session)
        if self.features.get(EarlyFlakeDetection) is not None:
            session.set_tag(tags.EFD_ENABLED, tags.TRUE)

        executor = SessionExecutor(self.features.features, timeout=self.config.test_timeout)
        executor.execute(manifest, session)

        tia = self.features.get(TestImpactAnalysis)
        if tia is not None:
            session.set_metric(tags.ITR_TESTS_SKIPPED, tia.skipped_count)

        self.reporter.set_session(session)
        self.reporter.add_groups(executor.groups)
        return session

    def stop(self) -> None:
        """Stop features and release the API client. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        if self.features is not None:
            self.features.stop()
        if self._owns_api and self.api is not None:
            self.api.close()

    def __enter__(self) -> SessionContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
