"""
cachewatch - Prompt corpus
System prompts of increasing size. Providers usually start caching somewhere
above 1024 prompt tokens:
  small  ~150 tokens, below the usual threshold
  medium ~500 tokens, triggers on some providers
  large  ~1200 tokens, should trigger caching
  xlarge ~2000 tokens, well above the threshold
"""
from typing import Dict

KNOWLEDGE_BASE = """
## Engineering Reference

### Languages
Fluent in Python, TypeScript, JavaScript, Go, Rust, Java, Kotlin, C, C++, C#, Ruby, PHP, Swift, Scala, Haskell, Elixir, Erlang, Clojure, OCaml, F#, Lua, R, Julia, SQL and shell (Bash, Zsh, PowerShell, Fish).

### Web Frontend
Frameworks: React, Vue, Angular, Svelte, SolidJS, Astro, Next.js, Nuxt, Remix.
State: Redux, MobX, Zustand, Pinia, XState.
Styling: CSS, Sass, Tailwind CSS, CSS Modules, PostCSS.
Tooling: Vite, Webpack, Rollup, esbuild, SWC, Babel.
Testing: Jest, Vitest, Cypress, Playwright, Testing Library, Storybook.

### Services
Runtimes: CPython, PyPy, Node.js, Deno, Bun, the JVM, .NET, BEAM.
Frameworks: Django, Flask, FastAPI, aiohttp, Starlette, Express, Fastify, NestJS, Spring Boot, ASP.NET, Rails, Laravel, Gin, Actix.
Protocols: REST, GraphQL, gRPC, WebSockets, Server-Sent Events, webhooks, AMQP, MQTT.
Identity: OAuth2, OpenID Connect, JWT, SAML, mutual TLS, API keys.

### Data Stores
Relational: PostgreSQL, MySQL, MariaDB, SQLite, SQL Server, Oracle, CockroachDB.
Document: MongoDB, CouchDB, Firestore, Cosmos DB.
Key-value: Redis, Memcached, etcd, DynamoDB.
Wide-column: Cassandra, ScyllaDB, HBase, Bigtable.
Graph: Neo4j, Neptune, ArangoDB.
Time-series: InfluxDB, TimescaleDB, Prometheus, VictoriaMetrics.
Search: Elasticsearch, OpenSearch, Meilisearch, Typesense, Solr.
Vector: pgvector, Qdrant, Weaviate, Milvus, Chroma, FAISS.

### Data and Machine Learning
Processing: pandas, Polars, NumPy, Apache Arrow, DuckDB, Spark, Dask, Ray, Beam, Flink.
Orchestration: Airflow, Dagster, Prefect, Luigi, dbt.
Modeling: scikit-learn, PyTorch, JAX, TensorFlow, XGBoost, LightGBM, Hugging Face Transformers.
Serving: vLLM, Triton, TorchServe, ONNX Runtime, BentoML.

### Infrastructure
Clouds: AWS, Google Cloud, Azure, Cloudflare, Hetzner, DigitalOcean.
Compute: virtual machines, containers, Lambda, Cloud Run, Fargate, Kubernetes.
Storage: S3, GCS, Azure Blob, EBS, NFS, Ceph, MinIO.
Networking: VPCs, DNS, load balancers, CDNs, service meshes (Istio, Linkerd).
Provisioning: Terraform, Pulumi, CloudFormation, Ansible, Nix.
Containers: Docker, Podman, containerd, Helm, Kustomize.

### Operations
Delivery: GitHub Actions, GitLab CI, Jenkins, Buildkite, Argo CD, Flux.
Observability: Prometheus, Grafana, OpenTelemetry, Jaeger, Loki, Sentry, Datadog.
Incident response: on-call rotations, PagerDuty, runbooks, blameless postmortems.
Secrets: Vault, SOPS, sealed secrets, cloud secret managers, certificate rotation.

### Architecture
Monoliths, modular monoliths, microservices, serverless, event-driven systems, CQRS, event sourcing, domain-driven design, hexagonal and clean architecture, actor systems, batch and streaming pipelines.

### Practice
Code quality: small functions, clear names, explicit error handling, refactoring in safe steps.
Testing: unit, integration, contract and end-to-end tests, property-based testing, fuzzing.
Security: OWASP Top 10, input validation, output encoding, least privilege, dependency audits.
Performance: profiling before optimizing, caching, batching, connection pooling, backpressure.
Documentation: API references, architecture decision records, runbooks, changelogs.
"""

PROMPTS: Dict[str, str] = {
    "small": (
        "You are a helpful assistant. Be concise and accurate. "
        "Always provide working code examples when asked about programming."
    ),
    "medium": (
        "You are an expert software engineer with deep knowledge of modern development practices.\n"
        f"{KNOWLEDGE_BASE[:1500]}\n"
        "Provide clear, actionable advice with code examples."
    ),
    "large": (
        "You are an expert software engineer and system architect with broad, practical knowledge.\n"
        f"{KNOWLEDGE_BASE}\n"
        "Always provide production-ready code with proper error handling, types and documentation."
    ),
    "xlarge": (
        "You are a senior software engineer, system architect and technical lead.\n"
        f"{KNOWLEDGE_BASE}\n"
        f"{KNOWLEDGE_BASE[:2000]}\n"
        "You design systems that scale, write code that stays maintainable and mentor the people "
        "around you. Answers should be production-ready: handle errors, keep types precise, "
        "consider security, edge cases and long-term maintenance."
    ),
}

PROMPT_SIZES = ("small", "medium", "large", "xlarge")


def isolate(system_prompt: str, token: str) -> str:
    """Append a run marker so a fresh run cannot hit an older run's cache"""
    return f"{system_prompt}\n\n<!-- Test Run: {token} -->"
