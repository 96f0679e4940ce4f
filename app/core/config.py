from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False

    # JWT (tokens are issued by the auth service; we only decode them)
    secret_key: str
    access_token_expire_minutes: int = 15
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Env
    env: str = "development"
    # Wall clock of the department, used for the "today" window
    timezone: str = "America/Sao_Paulo"

    # Directory (LDAP)
    ldap_server: str = ""
    ldap_user: str = ""
    ldap_domain: str = ""
    ldap_password: str = ""
    ldap_base_dn: str = ""
    ldap_company: str = "SMUL"
    ldap_timeout_seconds: int = 10

    # Appointment rules
    appointment_duration_minutes: int = 60

    # Spreadsheet import
    header_scan_rows: int = 20
    header_default_row: int = 8  # 9th row of the department's standard report
    import_max_rows: int = 1000
    import_max_columns: int = 26  # A..Z
    import_max_file_bytes: int = 10 * 1024 * 1024

    # Technicians provisioned from an RF code
    technician_login_prefix: str = "d"
    institutional_email_domain: str = "smul.prefeitura.sp.gov.br"

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # Bootstrap accounts (app.seed)
    seed_dev_login: str = ""
    seed_dev_name: str = ""
    seed_dev_email: str = ""
    seed_portaria_password: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def ldap_enabled(self) -> bool:
        return bool(self.ldap_server and self.ldap_base_dn)


settings = Settings()
