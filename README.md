# orderhub

The core of an order storage service, as a library.

## Modules

- `orderhub.domain` holds the order model: `Order`, `Delivery`, `Payment` and `Item`.
  - Every class has `to_dict` and `from_dict`.
  - `Order` also has `to_json` and `from_json`, and `date_created` is written as an RFC 3339 timestamp.
  - Malformed JSON, a field of the wrong type or a bad timestamp raises `InvalidOrderError`, a subclass of `ValueError`. It marks data that can never be accepted.
- `orderhub.ports` holds the protocols the layers talk through: `Logger`, `MessageConsumer`, `OrderCache`, `OrderReadService`, `OrderRepository` and `OrderValidator`.
  - `NullLogger` passes messages to the standard `logging` logger named `orderhub`. That logger has only a null handler, so nothing is printed unless the application configures logging.
- `orderhub.cache` holds `LRUCacheTTL(capacity, ttl, clock)`, a thread-safe LRU cache.
  - `ttl` is given in seconds or as a `timedelta`. A value of zero or less means entries never expire. A capacity of zero or less is raised to 1.
  - `get` returns a copy of the order, or `None` on a miss or on an expired entry. A hit moves the entry to the most recent position and renews its TTL.
  - `set` stores a copy and evicts the least recently used entry on overflow. It raises `CacheInvalidOrderError` for `None` or for an empty `order_uid`.
  - `warm_up` stores many orders at once.
  - `len(cache)` gives the number of entries.
- `orderhub.consumer_config` holds `ConsumerConfig` and `ReaderConfig`.
  - `ConsumerConfig.reader_config()` always sets manual commits (`commit_interval` 0).
  - `start_offset` is trimmed and compared without case. Only `"first"` selects `FIRST_OFFSET`; any other value selects `LAST_OFFSET`.
- `orderhub.consumer` holds `Consumer`, an at-least-once loop over a `Reader` that hands each payload to a `MessageSaver`.
  - A message that is handled is committed.
  - When the saver raises `InvalidOrderError`, the message is committed and skipped.
  - Any other error, including exceeding `process_timeout`, leaves the message uncommitted. The consumer then pauses briefly before the next fetch.
  - Failed fetches are retried with exponential backoff with equal jitter, from `retry_initial` up to `retry_max`. The defaults are 1 s and 30 s, and `process_timeout` defaults to 5 s.
  - `close()` stops `run()` and closes the reader. It runs only once.
  - `Consumer.from_config` builds a consumer from a `ConsumerConfig`.
- `orderhub.app` holds `App(logger, http_server, consumer, graceful_timeout)`.
  - `run(stop)` starts the consumer and the HTTP server in background threads. The server only needs the `socketserver.BaseServer` shape.
  - It waits until the `threading.Event` `stop` is set or a component fails.
  - It then shuts the server down within the graceful timeout, which defaults to 5 s, and closes the consumer.
- `orderhub.repository` stores orders through SQLAlchemy.
  - `new_engine(dsn, max_conns)` creates an engine and checks the connection; it raises `RepositoryError` on failure.
  - `create_schema(engine)` creates the tables.
  - `SqlOrderRepository.save` writes the order, its delivery, its payment and its items in one transaction. Saving the same order again updates it and replaces its item list.
  - `get_by_uid` returns `None` for an unknown UID.
  - `list_by_customer` returns a page newest first, ordered by `date_created` and then by `order_uid`. The default limit is 20.
  - `last_n` returns the newest `n` orders.

## Installation

```
pip install .
```

For tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from orderhub.cache import LRUCacheTTL
from orderhub.domain import Order
from orderhub.repository import SqlOrderRepository, create_schema, new_engine

engine = new_engine("sqlite:///orders.db", 10)
create_schema(engine)
repo = SqlOrderRepository(engine)

order = Order.from_json(raw_bytes)
repo.save(order)

cache = LRUCacheTTL(capacity=1000, ttl=600)
cache.warm_up(repo.last_n(100))
found = cache.get(order.order_uid)
```

In this example `raw_bytes` stands for the JSON bytes of one order.

## What is not included

- There is no command-line program.
- There is no configuration loader.
- There are no HTTP routes or handlers. `App` runs whatever server it is given.
- There is no broker client. A `Reader` implementation has to be supplied.
- There is no implementation of the order service or the order validator. Only the `MessageSaver`, `OrderReadService` and `OrderValidator` protocols are defined.