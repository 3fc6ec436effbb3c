import logging

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import requests
from dash import Dash, Input, Output, State, dash_table, dcc, html

from dev_dashboard import config

API_BASE = config.DASHBOARD_API_BASE
logger = logging.getLogger("visualization")

REPOSITORY_COLUMNS = ["name", "type", "url", "last_sync_at"]

dash_app = Dash(__name__, requests_pathname_prefix=f"{config.DASHBOARD_PREFIX}/")

dash_app.layout = html.Div(
    [
        html.H1("Dev Dashboard"),
        html.Button(
            "Refresh", id="refresh-btn", n_clicks=0, style={"marginBottom": "16px"}
        ),
        html.Div(id="stats-output", style={"marginBottom": "16px"}),
        html.H2("Repositories"),
        dash_table.DataTable(
            id="repositories-table",
            columns=[{"name": c, "id": c} for c in REPOSITORY_COLUMNS],
            data=[],
            style_cell={"textAlign": "left"},
        ),
        html.Hr(),
        html.H2("Deployment matrix"),
        html.P("Tag currently deployed per environment and region/namespace."),
        html.Div(
            [
                html.Label("Service:", style={"marginRight": "8px"}),
                dcc.Dropdown(
                    id="service-dropdown",
                    options=[],  # Populated via callback
                    placeholder="Select a service…",
                    style={
                        "width": "350px",
                        "display": "inline-block",
                        "marginRight": "16px",
                    },
                ),
                html.Button("Load", id="load-deployments-btn", n_clicks=0),
            ]
        ),
        dcc.Graph(id="deployment-matrix"),
    ]
)


def deployment_matrix_frame(deployments):
    """
    Pivot deployment rows into environment x target cells holding the tag.

    The target is "region/namespace", or just the region when the overlay
    has no namespace.
    """
    if not deployments:
        return pd.DataFrame()
    df = pd.DataFrame(deployments)
    df["target"] = df.apply(
        lambda row: f"{row['region']}/{row['namespace']}" if row.get("namespace") else row["region"],
        axis=1,
    )
    return df.pivot_table(
        index="environment", columns="target", values="tag", aggfunc="first"
    ).fillna("")


def empty_figure(title):
    return go.Figure().update_layout(title=title, template="plotly_white")


@dash_app.callback(
    Output("repositories-table", "data"),
    Output("stats-output", "children"),
    Input("refresh-btn", "n_clicks"),
)
def update_repositories(_):
    try:
        repositories = requests.get(f"{API_BASE}/repositories", timeout=10).json()
        stats = requests.get(f"{API_BASE}/dashboard/stats", timeout=10).json()
        rows = [{c: repo.get(c) for c in REPOSITORY_COLUMNS} for repo in repositories]
        summary = (
            f"{stats.get('repositories', 0)} repositories, "
            f"{stats.get('microservices', 0)} microservices, "
            f"{stats.get('kubernetes_resources', 0)} kubernetes resources, "
            f"{stats.get('deployments', 0)} deployments"
        )
        return rows, summary
    except Exception as e:
        logger.error(f"Error loading repositories: {e}")
        return [], html.Div("Error retrieving data", style={"color": "red"})


@dash_app.callback(
    Output("service-dropdown", "options"),
    Input("refresh-btn", "n_clicks"),
)
def update_service_dropdown(_):
    try:
        services = requests.get(f"{API_BASE}/microservices", timeout=10).json()
        return [{"label": s["name"], "value": s["id"]} for s in services]
    except Exception as e:
        logger.error(f"Error fetching service list: {e}")
        return []


@dash_app.callback(
    Output("deployment-matrix", "figure"),
    Input("load-deployments-btn", "n_clicks"),
    State("service-dropdown", "value"),
    prevent_initial_call=True,
)
def update_deployment_matrix(n_clicks, service_id):
    if not service_id:
        return empty_figure("Select a service")
    try:
        deployments = requests.get(
            f"{API_BASE}/microservices/{service_id}/deployments", timeout=10
        ).json()
        matrix = deployment_matrix_frame(deployments)
        if matrix.empty:
            return empty_figure("No deployments found for this service")
        # One color per distinct tag, with the tag printed in each cell
        tags = sorted({tag for tag in matrix.values.ravel() if tag})
        index = {tag: i for i, tag in enumerate(tags)}
        codes = matrix.apply(lambda col: col.map(lambda tag: index.get(tag, -1)))
        fig = px.imshow(
            codes,
            text_auto=False,
            aspect="auto",
            color_continuous_scale="Viridis",
            title="Deployed tags",
        )
        fig.update_traces(text=matrix.values, texttemplate="%{text}")
        fig.update_layout(coloraxis_showscale=False, template="plotly_white")
        return fig
    except Exception as e:
        logger.error(f"Error updating deployment matrix: {e}")
        return empty_figure("Error loading data")


def create_dash_app(fastapi_app):
    """
    Mounts the Dash app to the given FastAPI app at the dashboard prefix.
    """
    from starlette.middleware.wsgi import WSGIMiddleware

    if not hasattr(fastapi_app, "mount"):
        raise ValueError("Argument must be a FastAPI app instance.")

    fastapi_app.mount(config.DASHBOARD_PREFIX, WSGIMiddleware(dash_app.server))
