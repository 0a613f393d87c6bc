"""Tenant-side application menu."""

from .models import ROLE_CS_ADMIN, ROLE_CS_USER, ROLE_END_USER, ROLE_TENANT_ADMIN
from .navigation import parse_navigation

CS_ROLES = [ROLE_CS_ADMIN, ROLE_CS_USER]
TENANT_ROLES = [ROLE_TENANT_ADMIN, ROLE_END_USER]


def _item(key, title, path, authority, icon=""):
    return {
        "key": key,
        "type": "item",
        "title": title,
        "path": path,
        "icon": icon,
        "translate_key": f"nav.{key}",
        "authority": authority,
    }


def _collapse(key, title, authority, children, icon=""):
    return {
        "key": key,
        "type": "collapse",
        "title": title,
        "icon": icon,
        "translate_key": f"nav.{key}",
        "authority": authority,
        "children": children,
    }


_PARTS_PAGES = [
    ("manufacturers", "Manufacturers", "manufacturers", "manufacturer"),
    ("brands", "Brands", "brands", "brand"),
    ("suppliers", "Suppliers", "suppliers", "suppliers"),
    ("partCategories", "Part Categories", "part-categories", "partcategory"),
    ("masterParts", "Master Parts", "master-parts", "masterparts"),
    ("supplierParts", "Supplier Parts", "supplier-parts", "supplierparts"),
    ("matchParts", "Match Parts", "match-parts", "matchparts"),
]


def _parts_children(prefix, roles):
    return [
        _item(
            f"{prefix}.{key}",
            title,
            f"/parts-management/{slug}",
            roles + [f"{perm}.all", f"{perm}.view"],
        )
        for key, title, slug, perm in _PARTS_PAGES
    ]


def _parts_authority(roles):
    authority = list(roles)
    for _, _, _, perm in _PARTS_PAGES:
        authority += [f"{perm}.all", f"{perm}.view"]
    return authority


DEFAULT_NAVIGATION_CONFIG = [
    _item("home", "Home", "/app/tenant-dashboard", [], icon="home"),
    _collapse(
        "tenantportal",
        "Portal Administration",
        CS_ROLES,
        [
            _item("tenantportal.dashboard", "Dashboard", "/tenantportal/dashboard", [ROLE_CS_ADMIN]),
            _item("tenantportal.users", "User Management", "/tenantportal/users", [ROLE_CS_ADMIN]),
            _item("tenantportal.customers", "Customer Management", "/admin/customers", CS_ROLES),
            _item("tenantportal.roles", "Role Management", "/tenantportal/roles", [ROLE_CS_ADMIN]),
            _item("tenantportal.workspaces", "Workspace Management", "/tenantportal/workspaces", CS_ROLES),
            _collapse(
                "tenantportal.shopAttributes",
                "Shop Attributes",
                CS_ROLES,
                [
                    _item("tenantportal.shopAttributes.attributes", "Attributes", "/admin/shop-attributes", CS_ROLES),
                    _item("tenantportal.shopAttributes.categories", "Categories", "/admin/attribute-categories", CS_ROLES),
                    _item("tenantportal.shopAttributes.units", "Units", "/admin/attribute-units", CS_ROLES),
                ],
            ),
            _collapse(
                "tenantportal.partsManagement",
                "Parts Management",
                _parts_authority(CS_ROLES + TENANT_ROLES),
                _parts_children("tenantportal.partsManagement", CS_ROLES + TENANT_ROLES),
            ),
            _item("tenantportal.programs", "Programs / Network", "/tenantportal/programs", CS_ROLES),
        ],
        icon="setting",
    ),
    _collapse(
        "adminMenu",
        "Admin Menu",
        [ROLE_TENANT_ADMIN],
        [
            _item("adminMenu.users", "Users", "/tenantportal/tenant/users", [ROLE_TENANT_ADMIN]),
            _item("adminMenu.roles", "Roles", "/tenantportal/tenant/roles", [ROLE_TENANT_ADMIN]),
            _item("adminMenu.workspaces", "Workspaces", "/tenantportal/tenant/workspaces", [ROLE_TENANT_ADMIN]),
            _item("adminMenu.reportCategories", "Report Categories", "/tenantportal/tenant/report-categories", [ROLE_TENANT_ADMIN]),
            _item("adminMenu.reports", "Reports", "/tenantportal/tenant/reports", [ROLE_TENANT_ADMIN]),
            _item("adminMenu.shops", "Shops", "/admin/shops", [ROLE_TENANT_ADMIN]),
            _item("adminMenu.programs", "Programs / Network", "/app/programs", [ROLE_TENANT_ADMIN]),
        ],
        icon="admin",
    ),
    _item("tenantDashboard", "Dashboard", "/app/tenant-dashboard", TENANT_ROLES, icon="chart"),
    _collapse(
        "shopKPI",
        "Shop KPI",
        TENANT_ROLES + ["shop_properties.all", "shop_properties.view", "shop_properties.edit"],
        [
            _item(
                "shopKPI.shopProperties",
                "Shop Properties",
                "/app/shop-properties",
                TENANT_ROLES + ["shop_properties.all", "shop_properties.view", "shop_properties.edit"],
            ),
            _item(
                "shopKPI.shopKpi",
                "KPI and Goals",
                "/app/shop-kpi",
                TENANT_ROLES + ["shop_kpi.all", "shop_kpi.view", "shop_kpi.edit"],
            ),
        ],
        icon="chart",
    ),
    _collapse(
        "partsManagement",
        "Parts Management",
        _parts_authority(TENANT_ROLES),
        _parts_children("partsManagement", TENANT_ROLES),
        icon="parts",
    ),
    _collapse(
        "accounting",
        "Accounting",
        TENANT_ROLES,
        [
            _item(
                "accounting.masterChartOfAccount",
                "Master Chart of Account",
                "/tenantportal/accounting/master-chart-of-account",
                [ROLE_TENANT_ADMIN],
            ),
            _item("accounting.chartOfAccounts", "Chart of Accounts", "/accounting/chart-of-accounts", TENANT_ROLES),
            _item("accounting.shopChartOfAccount", "Shop Chart of Account", "/accounting/shop-chart-of-account", TENANT_ROLES),
            _item("accounting.uploadGL", "Upload GL", "/accounting/upload-gl", TENANT_ROLES),
        ],
        icon="accounting",
    ),
    _item(
        "subscriptions",
        "Subscriptions",
        "/subscriptions",
        TENANT_ROLES + ["subscription.view", "subscription.all"],
        icon="subscription",
    ),
    _item(
        "reports",
        "Reports",
        "/reports",
        TENANT_ROLES + ["report.read", "report.all"],
        icon="reports",
    ),
]

DEFAULT_NAVIGATION = parse_navigation(DEFAULT_NAVIGATION_CONFIG)
