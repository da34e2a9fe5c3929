# cortextools

Tools for working with a Cortex cluster, its APIs and its chunk index.

## Installation

```console
pip install cortextools
```

To run the test suite:

```console
pip install "cortextools[test]"
pytest
```

## Modules

- **`cortextools.client`** – `CortexClient`, configured with `ClientConfig`
  (address, tenant `id`, basic auth `user`/`key` or `auth_token`, optional
  TLS files, `use_legacy_routes`). Methods: `create_rule_group`,
  `get_rule_group`, `list_rules`, `delete_rule_group`,
  `create_alertmanager_config`, `get_alertmanager_config`,
  `delete_alertmanager_config` and `query`. Non-2xx responses raise
  `CortexAPIError`; a 404 raises `ResourceNotFoundError`. The helpers
  `join_path` and `build_url` join an escaped API path onto the base address.
- **`cortextools.receiver`** – `Receiver`, an Alertmanager webhook handler.
  `measure_latency(payload)` takes the webhook JSON, and for each firing
  alert with an `alertname` label and a `time` annotation observes
  `now - time` in its `roundtrip_duration` `Histogram`, counting each
  timestamp once. It returns the number of alerts measured and raises
  `ValueError` on an unparsable payload. `purge_timestamps` forgets
  timestamps older than `ReceiverConfig.purge_lookback`; `start`/`stop` run
  that purge in a background thread. `wsgi_app` serves
  `POST /api/v1/receiver` as a WSGI application.
- **`cortextools.runner`** – `Runner` holds `GaugeCase`s (made with
  `new_gauge_case`) whose `collect()` reports the current Unix time, and
  keeps a rule group (namespace `e2ealerting`) and an Alertmanager
  configuration in sync. `create_runner(RunnerConfig)` builds the clients and
  reads the configuration files; `sync()` pushes once, `start()` syncs
  periodically and returns `False` when there is nothing to sync.
- **`cortextools.workload`** – benchmark workloads. `load_workload_desc`
  parses the YAML description, `new_write_workload` expands series and
  `WriteWorkload.generate_time_series(bench_id, when)` produces one sample
  per series and replica. `new_query_workload(bench_id, desc)` renders query
  templates using `<< .Name >>` and `<< .Matchers >>`; the same `bench_id`
  always gives the same queries.
- **Chunk index helpers** – `cortextools.chunk_scan` (`ScanRequest` and
  `check_time`), `cortextools.chunk_filter` (`new_metric_filter`,
  `MetricFilter.accepts`), `cortextools.planner` (`new_planner`,
  `Planner.plan` over shards 1–240), `cortextools.cassandra_schema`
  (`parse_chunk_time_range_value` for index range keys) and
  `cortextools.bigtable_keys` (FNV-1a `hash_prefix` and `KeyMapper.keys`).

## Command-line tools

Each accepts `--help`.

### `cortextools-logtool`

Reads logfmt lines from standard input and prints a table of `GET`
requests to `/loki/api/` and `/api/prom` with timestamp, trace ID, queried
range, duration, status and path. `--query` adds the query column, `--dur 10s`
hides requests that took no longer than the given duration and `--utc`
shows timestamps in UTC.

```console
cortextools-logtool --query --dur 5s < query-frontend.log
```

### `cortextools-rules-migrator`

Copies rule group objects from a source directory to a destination
directory, rewriting each key `rules/<user>/<namespace>/<group>` so that the
namespace and group name are URL-safe base64 encoded.

```console
cortextools-rules-migrator --src.filesystem.dir old-rules --dst.filesystem.dir new-rules
```

`--delete-source` removes each source object after it is copied. The only
store type is `filesystem`.

### `cortextools-sim`

Simulates shuffle sharding of 1000 tenants over 100 replicas and prints a
CSV with per-replica series statistics and the share of tenants affected by
a double node outage.

```console
cortextools-sim > shuffle-sharding.csv
```

## Examples

```python
from cortextools.client import ClientConfig, CortexClient

client = CortexClient(ClientConfig(address="http://localhost:8080", id="tenant-1", key="placeholder"))
rules = client.list_rules()
client.delete_rule_group("my-namespace", "my-group")
```

```python
from cortextools.rules_migrator import generate_rule_object_key

generate_rule_object_key("rules/user/ns/group")
# 'rules/user/bnM=/Z3JvdXA='
```

```python
from cortextools.sim import calculate_max_affected_tenants

calculate_max_affected_tenants([[1, 2, 3], [1, 2, 6], [1, 2, 9]])
# 2
```

## What is not included

- No HTTP server is started: serve `Receiver.wsgi_app` with any WSGI server,
  and expose `Runner.collect()` yourself if metrics should be scraped.
- The workload module generates samples and queries but does not send them;
  there is no benchmark runner, remote-write client or DNS load balancing.
- Chunk helpers decode keys, filter and plan scans, but there is no client
  for Bigtable, GCS, Cassandra, S3 or Azure, so nothing scans, deletes or
  migrates chunks against a real store.
- The rules migrator works on local directories only.