from sqlalchemy.sql import bindparam
from sqlalchemy.sql import text as sql_text


class ResourceQuery():
    """ResourceQuery class

    Collect joins, WHERE clauses and bound parameters of a search on the
    resource table, then render them as a SQL statement.
    """

    def __init__(self, table='resource', alias='r'):
        """Constructor

        :param str table: Resource table name
        :param str alias: Alias of the resource table
        """
        self.table = table
        self.alias = alias
        self.joins = []
        self.where_clauses = []
        self.params = {}
        self.alias_count = 0

    def create_alias(self, prefix='geo'):
        """Return a new unique table alias."""
        alias = "%s_%d" % (prefix, self.alias_count)
        self.alias_count += 1
        return alias

    def create_named_parameter(self, value, prefix='geo'):
        """Bind a value and return its placeholder, e.g. ':geo_p0'."""
        name = "%s_p%d" % (prefix, len(self.params))
        self.params[name] = value
        return ':' + name

    def join(self, table, alias, on_clauses):
        """Add an inner join.

        :param str table: Escaped table name
        :param str alias: Table alias
        :param list[str] on_clauses: Conditions, joined with AND
        """
        self.joins.append(
            "JOIN %s %s ON %s" % (table, alias, " AND ".join(on_clauses))
        )

    def and_where(self, clause):
        """Add a condition, joined with AND to the other conditions."""
        self.where_clauses.append(clause)

    def sql(self, columns=None, distinct=True):
        """Render the SELECT statement.

        :param list[str] columns: Selected columns (default: resource id)
        :param bool distinct: Set to remove duplicate rows of joins
        """
        columns = columns or ["%s.id" % self.alias]
        where_clause = ""
        if self.where_clauses:
            where_clause = "WHERE (" + ") AND (".join(self.where_clauses) + ")"

        return """
            SELECT {distinct}{columns}
            FROM {table} {alias}
            {joins}
            {where_clause}
            ORDER BY {alias}.id;
        """.format(
            distinct="DISTINCT " if distinct else "",
            columns=", ".join(columns), table=self.table, alias=self.alias,
            joins="\n            ".join(self.joins),
            where_clause=where_clause
        )

    def statement(self, columns=None, distinct=True):
        """Return the SELECT statement as SQLAlchemy text with bound params."""
        sql = sql_text(self.sql(columns, distinct))
        expanding = [
            bindparam(name, expanding=True)
            for name, value in self.params.items()
            if isinstance(value, (list, tuple))
        ]
        if expanding:
            sql = sql.bindparams(*expanding)
        return sql
