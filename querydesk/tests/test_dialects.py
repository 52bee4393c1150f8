import unittest

from sqlalchemy.engine import make_url

from querydesk.app.core.dialects import (
    DatabaseType,
    build_connection_string,
    build_url,
    connect_args,
    default_port,
    get_dialect,
    parse_connection_params,
)
from querydesk.app.core.exceptions import UnsupportedDatabaseType
from querydesk.app.models.datasource import DataSource


class TestDialects(unittest.TestCase):
    def test_default_ports(self):
        self.assertEqual(default_port(DatabaseType.MYSQL), 3306)
        self.assertEqual(default_port(DatabaseType.POSTGRESQL), 5432)
        self.assertEqual(default_port(DatabaseType.SQLSERVER), 1433)
        self.assertEqual(default_port(DatabaseType.ORACLE), 1521)

    def test_type_names_are_case_insensitive(self):
        self.assertEqual(get_dialect("postgresql").display_name, "PostgreSQL")

    def test_unknown_type_is_rejected(self):
        with self.assertRaises(UnsupportedDatabaseType):
            get_dialect("DB2")
        with self.assertRaises(UnsupportedDatabaseType):
            build_connection_string("SQLITE", "h", 1, "d")

    def test_mysql_url_pins_utf8_and_utc(self):
        url = make_url(build_connection_string(DatabaseType.MYSQL, "db.local", 3306, "sales"))
        self.assertEqual(url.drivername, "mysql+pymysql")
        self.assertEqual((url.host, url.port, url.database), ("db.local", 3306, "sales"))
        self.assertEqual(url.query["charset"], "utf8mb4")
        self.assertEqual(url.query["init_command"], "SET time_zone = '+00:00'")
        self.assertNotIn("ssl_check_hostname", url.query)

        tls = make_url(build_connection_string(DatabaseType.MYSQL, "db.local", 3306, "sales", ssl_enabled=True))
        self.assertEqual(tls.query["ssl_check_hostname"], "false")

    def test_postgres_tls_maps_to_sslmode(self):
        plain = make_url(build_connection_string(DatabaseType.POSTGRESQL, "pg", 5432, "app"))
        secure = make_url(build_connection_string(DatabaseType.POSTGRESQL, "pg", 5432, "app", ssl_enabled=True))
        self.assertEqual(plain.query["sslmode"], "disable")
        self.assertEqual(secure.query["sslmode"], "require")

    def test_sqlserver_tls_maps_to_encrypt(self):
        plain = make_url(build_connection_string(DatabaseType.SQLSERVER, "ms", 1433, "app"))
        secure = make_url(build_connection_string(DatabaseType.SQLSERVER, "ms", 1433, "app", ssl_enabled=True))
        self.assertEqual(plain.drivername, "mssql+pyodbc")
        self.assertEqual(plain.query["Encrypt"], "no")
        self.assertEqual(secure.query["Encrypt"], "yes")
        self.assertEqual(secure.query["TrustServerCertificate"], "yes")
        self.assertIn("driver", plain.query)

    def test_oracle_service_name_is_the_database(self):
        url = make_url(build_connection_string(DatabaseType.ORACLE, "ora", 1521, "ORCLPDB1", ssl_enabled=True))
        self.assertEqual(url.drivername, "oracle+oracledb")
        self.assertEqual(url.database, "ORCLPDB1")
        self.assertEqual(dict(url.query), {})

    def test_connection_params_are_merged_last(self):
        url = make_url(build_connection_string(
            DatabaseType.MYSQL, "db", 3306, "x", connection_params='{"charset": "latin1", "autocommit": true}'
        ))
        self.assertEqual(url.query["charset"], "latin1")
        self.assertEqual(url.query["autocommit"], "True")

    def test_connection_string_carries_no_credentials(self):
        rendered = build_connection_string(DatabaseType.POSTGRESQL, "pg", 5432, "app")
        self.assertNotIn("@", rendered)

    def test_build_url_attaches_credentials(self):
        ds = DataSource(
            name="x", database_type=DatabaseType.POSTGRESQL, host="pg", port=5432,
            database_name="app", username="u", owner_id="admin",
        )
        url = build_url(ds, "reader", "p@ss:word")
        self.assertEqual(url.username, "reader")
        self.assertEqual(url.password, "p@ss:word")
        self.assertNotIn("p@ss:word", url.render_as_string(hide_password=True))

    def test_parse_connection_params(self):
        self.assertEqual(parse_connection_params(None), {})
        self.assertEqual(parse_connection_params("  "), {})
        self.assertEqual(parse_connection_params('{"a": 1}'), {"a": "1"})
        with self.assertRaises(ValueError):
            parse_connection_params("[1, 2]")
        with self.assertRaises(ValueError):
            parse_connection_params("{not json")

    def test_connect_args(self):
        self.assertEqual(connect_args(DatabaseType.MYSQL, 10), {"connect_timeout": 10})
        self.assertEqual(connect_args(DatabaseType.MYSQL, 10, 30), {"connect_timeout": 10, "read_timeout": 30})
        self.assertEqual(connect_args(DatabaseType.POSTGRESQL, 10, 30), {"connect_timeout": 10})
        self.assertEqual(connect_args(DatabaseType.SQLSERVER, 5), {"timeout": 5})
        self.assertEqual(connect_args(DatabaseType.ORACLE, 5), {"tcp_connect_timeout": 5})


if __name__ == "__main__":
    unittest.main()
