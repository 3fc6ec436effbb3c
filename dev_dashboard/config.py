"""
Configuration Module

This module contains configuration settings for the application.
"""
import os
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv

# Base directory - one level up from this file
BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")

# Local storage
DATA_DIR = Path(os.getenv("DATA_DIR", BASE_DIR / "data"))
DATA_DIR.mkdir(exist_ok=True, parents=True)

# Database settings - a single local SQLite database
DATABASE_PATH = Path(os.getenv("DATABASE_PATH", DATA_DIR / "dev_dashboard.db"))
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATABASE_PATH}")

# GitHub API settings
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")  # Personal Access Token for GitHub API
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

# Sync settings
SYNC_INTERVAL_SECONDS = int(os.getenv("SYNC_INTERVAL_SECONDS", "300"))
WORKFLOW_RUNS_LIMIT = int(os.getenv("WORKFLOW_RUNS_LIMIT", "50"))
CORRELATION_COMMIT_LIMIT = int(os.getenv("CORRELATION_COMMIT_LIMIT", "50"))
SERVICE_COMMITS_LIMIT = int(os.getenv("SERVICE_COMMITS_LIMIT", "100"))
DEFAULT_SERVICE_PATH = os.getenv("DEFAULT_SERVICE_PATH", "services")
MANIFEST_ROOT = os.getenv("MANIFEST_ROOT", "services")
MANIFEST_FILENAME = "kustomization.yaml"
KUBERNETES_DEFAULT_DIRS = ["k8s", "kubernetes", "manifests", "deployment", "overlays"]

# JIRA settings (values stored through the settings API take precedence)
JIRA_URL = os.getenv("JIRA_URL", "")
JIRA_USERNAME = os.getenv("JIRA_USERNAME", "")
JIRA_TOKEN = os.getenv("JIRA_TOKEN", "")
JIRA_AUTH_METHOD = os.getenv("JIRA_AUTH_METHOD", "")

# Keys of the settings table
CONFIG_GITHUB_TOKEN = "github_token"
CONFIG_GITHUB_ENTERPRISE_URL = "github_enterprise_url"
CONFIG_JIRA_URL = "jira_url"
CONFIG_JIRA_USERNAME = "jira_username"
CONFIG_JIRA_TOKEN = "jira_token"
CONFIG_JIRA_AUTH_METHOD = "jira_auth_method"

# API settings
API_PREFIX = "/api"

# Dashboard settings
DASHBOARD_PREFIX = "/dashboard"
DASHBOARD_API_BASE = os.getenv("DASHBOARD_API_BASE", "http://localhost:8000/api")
