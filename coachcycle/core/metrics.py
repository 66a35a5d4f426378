from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest


registry = CollectorRegistry()


backend_requests_total = Counter(
    'backend_requests_total',
    'Total requests issued to the backing service',
    ['method', 'endpoint', 'status'],
    registry=registry
)

backend_request_duration_seconds = Histogram(
    'backend_request_duration_seconds',
    'Backing service request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry
)

cache_hits_total = Counter(
    'cache_hits_total',
    'Total cache hits',
    ['kind'],
    registry=registry
)

cache_misses_total = Counter(
    'cache_misses_total',
    'Total cache misses',
    ['kind'],
    registry=registry
)

cache_coalesced_total = Counter(
    'cache_coalesced_total',
    'Reads served by joining an in-flight population of the same key',
    ['kind'],
    registry=registry
)

cache_invalidations_total = Counter(
    'cache_invalidations_total',
    'Total cache invalidations',
    ['kind'],
    registry=registry
)

replica_writes_total = Counter(
    'replica_writes_total',
    'Per-candidate replication results',
    ['mutation', 'result'],
    registry=registry
)

app_info = Info(
    'app',
    'Application information',
    registry=registry
)


def track_backend_request(method: str, endpoint: str, status: int | str, duration: float):
    backend_requests_total.labels(method=method, endpoint=endpoint, status=str(status)).inc()
    backend_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)


def track_cache_hit(kind: str):
    cache_hits_total.labels(kind=kind).inc()


def track_cache_miss(kind: str):
    cache_misses_total.labels(kind=kind).inc()


def track_cache_coalesced(kind: str):
    cache_coalesced_total.labels(kind=kind).inc()


def track_cache_invalidation(kind: str):
    cache_invalidations_total.labels(kind=kind).inc()


def track_replica_write(mutation: str, result: str):
    replica_writes_total.labels(mutation=mutation, result=result).inc()


def get_metrics() -> bytes:
    return generate_latest(registry)


def set_app_info(version: str, environment: str):
    app_info.info({
        'version': version,
        'environment': environment
    })
