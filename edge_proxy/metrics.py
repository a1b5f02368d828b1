from prometheus_client import Counter, Histogram

proxy_outcomes = Counter(
    "edge_proxy_outcomes_total",
    "Requests handled by the edge proxy, by path classification and outcome",
    ["classification", "outcome"],
)

upstream_latency = Histogram(
    "edge_proxy_upstream_seconds",
    "Time spent waiting for the upstream origin",
    ["method"],
)
