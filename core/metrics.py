from prometheus_client import Counter, Gauge

WEBHOOK_COUNTER = Counter(
    'pypaas_webhooks_total',
    'Webhook deliveries received, by outcome',
    ['outcome'],
)

REDEPLOY_COUNTER = Counter(
    'pypaas_redeploys_total',
    'Redeploys of existing deployments, by outcome',
    ['outcome'],
)

DEPLOYMENT_COUNTER = Counter(
    'pypaas_deployments_total',
    'Fresh deployments from source, by outcome',
    ['outcome'],
)

ACTIVE_CONTAINERS_GAUGE = Gauge(
    'pypaas_active_containers',
    'Number of workloads currently owned by a deployment'
)
