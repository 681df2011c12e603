"""Technology registry.

Every technology the catalog knows about is defined once in `REGISTRY`.
Name keywords, content phrases, aliases, config-file hints and dependency
package names are all read from here; the lookup tables below are derived
from it at import time and nothing else in the codebase keeps its own list.
"""

from __future__ import annotations

from dataclasses import dataclass, field

TECHNOLOGY_CATEGORIES = (
    "Frontend",
    "Languages",
    "Styling",
    "Backend & APIs",
    "Data",
    "Cloud & Infra",
    "Specialties",
)


# Separators that surround a word in "source skill_id name".
WORD_START = " -/_"
WORD_END = " -/_."


def word_start(*terms: str) -> tuple[str, ...]:
    """`term` right after a separator, so `rust` does not hit `trust`."""
    return tuple(f"{sep}{term}" for term in terms for sep in WORD_START)


def whole_word(*terms: str) -> tuple[str, ...]:
    """`term` between separators, so `ai` does not hit `email`."""
    return tuple(
        f"{start}{term}{end}" for term in terms for start in WORD_START for end in WORD_END
    )


@dataclass(frozen=True, slots=True)
class TechnologyDef:
    id: str
    name: str
    category: str
    # Matched as substrings of "source skill_id name". Short words go through
    # `word_start` / `whole_word` so they only match at word boundaries.
    name_keywords: tuple[str, ...]
    # Matched against fetched description/content; two hits are required.
    content_phrases: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    # Files whose presence in a repository signals this technology.
    config_files: tuple[str, ...] = ()
    # Exact dependency names (npm, PyPI, crates.io, Go modules).
    packages: tuple[str, ...] = ()
    package_prefixes: tuple[str, ...] = field(default=())


REGISTRY: tuple[TechnologyDef, ...] = (
    # Frontend
    TechnologyDef(
        id="react",
        name="React",
        category="Frontend",
        name_keywords=("react", "jsx"),
        content_phrases=(
            "react component", "usestate", "useeffect", "react hook",
            "react-dom", "jsx component", "react app",
        ),
        aliases=("react", "reactjs", "react.js"),
        packages=("react", "react-dom", "react-native"),
    ),
    TechnologyDef(
        id="nextjs",
        name="Next.js",
        category="Frontend",
        name_keywords=("nextjs", "next-js", "next.js"),
        content_phrases=(
            "app router", "pages router", "next/image", "next/link",
            "getserversideprops", "getstaticprops", "next.js app", "nextjs app",
        ),
        aliases=("next", "nextjs", "next.js"),
        config_files=("next.config.js", "next.config.ts", "next.config.mjs"),
        packages=("next",),
    ),
    TechnologyDef(
        id="vue",
        name="Vue",
        category="Frontend",
        name_keywords=("vue", "vuejs", "nuxt"),
        content_phrases=(
            "vue component", "vue 3", "vue.js app", "vue plugin",
            "composition api", "options api",
        ),
        aliases=("vue", "vuejs", "vue.js"),
        config_files=("nuxt.config.ts", "nuxt.config.js"),
        packages=("vue", "nuxt"),
    ),
    TechnologyDef(
        id="svelte",
        name="Svelte",
        category="Frontend",
        name_keywords=("svelte", "sveltekit"),
        content_phrases=(
            "svelte component", "svelte store", "sveltekit app", "svelte app",
        ),
        aliases=("svelte", "sveltekit"),
        config_files=("svelte.config.js", "svelte.config.ts"),
        packages=("svelte", "@sveltejs/kit"),
        package_prefixes=("@sveltejs/",),
    ),
    TechnologyDef(
        id="angular",
        name="Angular",
        category="Frontend",
        name_keywords=("angular",),
        content_phrases=(
            "angular component", "angular module", "angular service",
            "angular app", "ngmodule",
        ),
        aliases=("angular",),
        config_files=("angular.json",),
        packages=("@angular/core", "@angular/cli"),
        package_prefixes=("@angular/",),
    ),
    # Languages
    TechnologyDef(
        id="typescript",
        name="TypeScript",
        category="Languages",
        name_keywords=("typescript",),
        content_phrases=(
            "typescript config", "tsconfig", "type annotation",
            "type safety", "typescript project", "type inference",
        ),
        aliases=("typescript", "ts"),
        config_files=("tsconfig.json",),
        packages=("typescript",),
    ),
    TechnologyDef(
        id="javascript",
        name="JavaScript",
        category="Languages",
        name_keywords=("javascript",),
        content_phrases=(
            "javascript function", "javascript project", "ecmascript",
            "vanilla js", "javascript app",
        ),
        aliases=("javascript", "js"),
    ),
    TechnologyDef(
        id="python",
        name="Python",
        category="Languages",
        name_keywords=("python", "django", "flask", "fastapi"),
        content_phrases=(
            "python script", "python package", "pip install",
            "python function", "python project", "python class",
        ),
        aliases=("python", "py"),
        config_files=("requirements.txt", "pyproject.toml"),
        packages=("django", "flask", "fastapi", "starlette"),
    ),
    TechnologyDef(
        id="rust",
        name="Rust",
        category="Languages",
        name_keywords=("rustlang", "rust-lang", "cargo", *word_start("rust")),
        content_phrases=(
            "rust project", "cargo.toml", "rust function",
            "rust crate", "rust code",
        ),
        aliases=("rust",),
        config_files=("Cargo.toml",),
        packages=("tokio", "actix-web", "axum", "rocket"),
    ),
    TechnologyDef(
        id="go",
        name="Go",
        category="Languages",
        name_keywords=("golang",),
        content_phrases=(
            "go module", "go function", "golang project",
            "go routine", "go code",
        ),
        aliases=("go", "golang"),
        config_files=("go.mod",),
        package_prefixes=(
            "github.com/gin-gonic/gin",
            "github.com/labstack/echo",
            "github.com/gofiber/fiber",
        ),
    ),
    TechnologyDef(
        id="java",
        name="Java",
        category="Languages",
        name_keywords=("spring-boot", "springboot", "maven", "gradle", *whole_word("java", "jvm")),
        content_phrases=(
            "java class", "java project", "spring boot",
            "maven project", "gradle project", "java application",
        ),
        aliases=("java",),
        config_files=("pom.xml", "build.gradle"),
    ),
    TechnologyDef(
        id="ruby",
        name="Ruby",
        category="Languages",
        name_keywords=("ruby", "rubyonrails", *word_start("rails")),
        content_phrases=(
            "ruby on rails", "rails app", "ruby gem",
            "ruby project", "ruby class",
        ),
        aliases=("ruby", "rails"),
        config_files=("Gemfile",),
    ),
    TechnologyDef(
        id="php",
        name="PHP",
        category="Languages",
        name_keywords=("php", "laravel"),
        content_phrases=(
            "php project", "laravel app", "php function",
            "composer.json", "php class",
        ),
        aliases=("php", "laravel"),
        config_files=("composer.json",),
    ),
    TechnologyDef(
        id="swift",
        name="Swift",
        category="Languages",
        name_keywords=("swift", "swiftui", *whole_word("ios")),
        content_phrases=(
            "swift code", "swiftui view", "ios app",
            "swift project", "xcode project",
        ),
        aliases=("swift", "swiftui"),
        config_files=("Package.swift",),
    ),
    TechnologyDef(
        id="kotlin",
        name="Kotlin",
        category="Languages",
        name_keywords=("kotlin",),
        content_phrases=(
            "kotlin class", "android app", "kotlin project", "kotlin function",
        ),
        aliases=("kotlin",),
    ),
    # Styling
    TechnologyDef(
        id="tailwind",
        name="Tailwind CSS",
        category="Styling",
        name_keywords=("tailwind", "tailwindcss"),
        content_phrases=(
            "tailwind class", "tailwind config", "tailwind css",
            "tailwind utility", "tailwindcss config",
        ),
        aliases=("tailwind", "tailwindcss", "tailwind css"),
        config_files=(
            "tailwind.config.js", "tailwind.config.ts",
            "tailwind.config.mjs", "tailwind.config.cjs",
        ),
        packages=("tailwindcss", "@tailwindcss/typography", "@tailwindcss/forms"),
        package_prefixes=("@tailwindcss/",),
    ),
    TechnologyDef(
        id="css",
        name="CSS",
        category="Styling",
        name_keywords=("css", "scss", "sass", *whole_word("less")),
        content_phrases=(
            "css style", "css architecture", "css module",
            "css framework", "css-in-js", "css best practice", "css class",
        ),
        aliases=("css", "scss", "sass"),
        packages=("sass", "less", "styled-components", "@emotion/react"),
    ),
    # Backend & APIs
    TechnologyDef(
        id="node",
        name="Node.js",
        category="Backend & APIs",
        name_keywords=(
            "nodejs", "node-js", "node.js", "expressjs", "nestjs", "fastify",
            *whole_word("node", "express"),
        ),
        content_phrases=(
            "node.js app", "express app", "node server",
            "express server", "node.js project", "fastify server",
        ),
        aliases=("node", "nodejs", "node.js", "express", "fastify"),
        packages=("express", "fastify", "koa", "hono", "@nestjs/core"),
        package_prefixes=("@nestjs/",),
    ),
    TechnologyDef(
        id="graphql",
        name="GraphQL",
        category="Backend & APIs",
        name_keywords=("graphql", "apollo"),
        content_phrases=(
            "graphql query", "graphql mutation", "graphql schema",
            "graphql resolver", "graphql api",
        ),
        aliases=("graphql",),
        packages=(
            "graphql", "@apollo/client", "@apollo/server", "graphql-request", "urql",
        ),
    ),
    TechnologyDef(
        id="rest",
        name="REST APIs",
        category="Backend & APIs",
        name_keywords=("rest-api", "openapi", "swagger"),
        content_phrases=(
            "rest api", "restful api", "api endpoint",
            "openapi spec", "swagger doc",
        ),
        aliases=("rest", "rest api"),
    ),
    # Data
    TechnologyDef(
        id="postgres",
        name="PostgreSQL",
        category="Data",
        name_keywords=("postgres", "postgresql"),
        content_phrases=(
            "postgresql database", "postgres query", "sql query",
            "database migration", "postgres connection",
        ),
        aliases=("postgres", "postgresql"),
        packages=(
            "pg", "postgres", "@neondatabase/serverless", "knex",
            "psycopg2", "psycopg2-binary", "asyncpg", "sqlalchemy",
            "sqlx", "diesel",
        ),
        package_prefixes=("github.com/lib/pq", "github.com/jackc/pgx"),
    ),
    TechnologyDef(
        id="mysql",
        name="MySQL",
        category="Data",
        name_keywords=("mysql",),
        content_phrases=(
            "mysql database", "mysql query", "mysql connection", "mysql server",
        ),
        aliases=("mysql",),
        packages=("mysql", "mysql2", "pymysql", "mysqlclient"),
    ),
    TechnologyDef(
        id="mongodb",
        name="MongoDB",
        category="Data",
        name_keywords=("mongodb", "mongoose"),
        content_phrases=(
            "mongodb collection", "mongodb query", "mongoose model",
            "mongodb database", "mongo query",
        ),
        aliases=("mongodb", "mongo"),
        packages=("mongodb", "mongoose", "pymongo", "motor"),
        package_prefixes=("go.mongodb.org/mongo-driver",),
    ),
    TechnologyDef(
        id="redis",
        name="Redis",
        category="Data",
        name_keywords=whole_word("redis"),
        content_phrases=(
            "redis cache", "redis client", "redis connection", "redis store",
        ),
        aliases=("redis",),
        packages=("redis", "ioredis"),
    ),
    TechnologyDef(
        id="supabase",
        name="Supabase",
        category="Data",
        name_keywords=("supabase",),
        content_phrases=(
            "supabase client", "supabase auth", "supabase database",
            "supabase project",
        ),
        aliases=("supabase",),
        packages=(
            "@supabase/supabase-js", "@supabase/ssr", "@supabase/auth-helpers-nextjs",
            "supabase",
        ),
        package_prefixes=("@supabase/",),
    ),
    TechnologyDef(
        id="convex",
        name="Convex",
        category="Data",
        name_keywords=("convex",),
        content_phrases=(
            "convex function", "convex schema", "convex query",
            "convex mutation", "convex action",
        ),
        aliases=("convex",),
        packages=("convex",),
    ),
    TechnologyDef(
        id="prisma",
        name="Prisma",
        category="Data",
        name_keywords=("prisma",),
        content_phrases=(
            "prisma schema", "prisma client", "prisma migrate", "prisma model",
        ),
        aliases=("prisma",),
        packages=("prisma", "@prisma/client"),
    ),
    TechnologyDef(
        id="firebase",
        name="Firebase",
        category="Data",
        name_keywords=("firebase", "firestore"),
        content_phrases=(
            "firebase auth", "firebase database", "firestore collection",
            "firebase project", "firebase sdk",
        ),
        aliases=("firebase",),
        config_files=("firebase.json",),
        packages=("firebase", "firebase-admin"),
    ),
    # Cloud & Infra
    TechnologyDef(
        id="aws",
        name="AWS",
        category="Cloud & Infra",
        name_keywords=("amazon", "dynamodb", "aws-lambda", *word_start("aws")),
        content_phrases=(
            "aws service", "aws lambda", "aws s3",
            "amazon web services", "aws sdk", "aws cloud",
        ),
        aliases=("aws",),
        packages=("aws-sdk", "boto3"),
        package_prefixes=("@aws-sdk/", "aws-sdk-", "github.com/aws/aws-sdk-go"),
    ),
    TechnologyDef(
        id="gcp",
        name="Google Cloud",
        category="Cloud & Infra",
        name_keywords=("gcp", "google-cloud"),
        content_phrases=(
            "google cloud", "gcp service", "cloud function",
            "google cloud platform",
        ),
        aliases=("gcp", "google cloud"),
        package_prefixes=("@google-cloud/", "google-cloud-"),
    ),
    TechnologyDef(
        id="azure",
        name="Azure",
        category="Cloud & Infra",
        name_keywords=("azure",),
        content_phrases=(
            "azure service", "azure function", "azure cloud", "azure devops",
        ),
        aliases=("azure",),
        package_prefixes=("@azure/", "azure-"),
    ),
    TechnologyDef(
        id="docker",
        name="Docker",
        category="Cloud & Infra",
        name_keywords=("docker", "dockerfile", "containerize"),
        content_phrases=(
            "docker container", "docker image", "docker-compose",
            "dockerfile", "docker build",
        ),
        aliases=("docker",),
        config_files=("Dockerfile", "docker-compose.yml", "docker-compose.yaml"),
        packages=("dockerode",),
    ),
    TechnologyDef(
        id="git",
        name="Git",
        category="Cloud & Infra",
        name_keywords=("github", "gitlab", *whole_word("git")),
        content_phrases=(
            "git workflow", "git branch", "git commit",
            "git hook", "github action", "git repository",
        ),
        aliases=("git", "github"),
    ),
    TechnologyDef(
        id="ci",
        name="CI/CD",
        category="Cloud & Infra",
        name_keywords=("ci-cd", "cicd", "github-actions", "jenkins", *whole_word("ci", "cd")),
        content_phrases=(
            "ci/cd pipeline", "github actions", "ci pipeline",
            "continuous integration", "continuous deployment",
        ),
        aliases=("ci", "ci/cd"),
    ),
    # Specialties
    TechnologyDef(
        id="flutter",
        name="Flutter",
        category="Specialties",
        name_keywords=("flutter", *word_start("dart")),
        content_phrases=(
            "flutter widget", "flutter app", "dart code", "flutter project",
        ),
        aliases=("flutter", "dart"),
        config_files=("pubspec.yaml",),
    ),
    TechnologyDef(
        id="ai",
        name="AI / LLM",
        category="Specialties",
        name_keywords=(
            "llm", "openai", "anthropic", "claude", "gpt", "machine-learning",
            *whole_word("ai", "ml"),
        ),
        content_phrases=(
            "ai model", "llm integration", "machine learning",
            "ai assistant", "ai agent", "prompt engineering", "ai coding",
        ),
        aliases=("ai", "llm", "machine learning"),
        packages=(
            "openai", "@anthropic-ai/sdk", "@google/generative-ai", "ai",
            "langchain", "@langchain/core", "anthropic",
        ),
        package_prefixes=("@langchain/", "github.com/sashabaranov/go-openai"),
    ),
    TechnologyDef(
        id="testing",
        name="Testing",
        category="Specialties",
        name_keywords=(
            "testing", "vitest", "cypress", "playwright", "unit-test", "e2e",
            *word_start("test", "jest"),
        ),
        content_phrases=(
            "unit test", "e2e test", "test suite",
            "test coverage", "test runner", "integration test", "test case",
        ),
        aliases=("testing", "jest", "vitest", "playwright"),
        config_files=(
            "jest.config.js", "jest.config.ts",
            "vitest.config.ts", "vitest.config.js",
            "playwright.config.ts",
            "cypress.config.ts", "cypress.config.js",
        ),
        packages=(
            "jest", "vitest", "@playwright/test", "cypress", "mocha", "pytest",
        ),
    ),
    TechnologyDef(
        id="security",
        name="Security",
        category="Specialties",
        name_keywords=("security", "oauth", "jwt", "authentication", *whole_word("auth")),
        content_phrases=(
            "security best practice", "authentication flow",
            "authorization", "oauth flow", "jwt token", "security audit",
        ),
        aliases=("security", "auth", "authentication"),
    ),
    TechnologyDef(
        id="cursor",
        name="Cursor",
        category="Specialties",
        name_keywords=("cursor-rules", "cursorrules", "cursor-ide"),
        content_phrases=(
            "cursor rule", "cursor ide", "cursor editor", "cursor agent",
        ),
        aliases=("cursor",),
    ),
)

# Organisations that only publish skills for one technology.
SOURCE_ORG_TECH: dict[str, str] = {
    "supabase": "supabase",
    "convex-dev": "convex",
    "prisma": "prisma",
    "firebase": "firebase",
}


def build_name_keywords(
    registry: tuple[TechnologyDef, ...] = REGISTRY,
) -> dict[str, tuple[str, ...]]:
    return {tech.id: tech.name_keywords for tech in registry}


def build_content_phrases(
    registry: tuple[TechnologyDef, ...] = REGISTRY,
) -> dict[str, tuple[str, ...]]:
    return {tech.id: tech.content_phrases for tech in registry if tech.content_phrases}


def build_config_file_map(
    registry: tuple[TechnologyDef, ...] = REGISTRY,
) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for tech in registry:
        for filename in tech.config_files:
            mapping.setdefault(filename, tech.id)
    return mapping


def build_package_map(
    registry: tuple[TechnologyDef, ...] = REGISTRY,
) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for tech in registry:
        for package in tech.packages:
            mapping.setdefault(package, tech.id)
    return mapping


def build_prefix_patterns(
    registry: tuple[TechnologyDef, ...] = REGISTRY,
) -> list[tuple[str, str]]:
    return [(prefix, tech.id) for tech in registry for prefix in tech.package_prefixes]


def build_alias_map(
    registry: tuple[TechnologyDef, ...] = REGISTRY,
) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for tech in registry:
        for alias in (tech.id, *tech.aliases):
            mapping.setdefault(alias.lower(), tech.id)
    return mapping


def display_keywords(keywords: tuple[str, ...]) -> list[str]:
    stripped = dict.fromkeys(keyword.strip(WORD_START + WORD_END) for keyword in keywords)
    return [keyword for keyword in stripped if keyword]


def technologies_for_display(
    registry: tuple[TechnologyDef, ...] = REGISTRY,
) -> list[dict[str, object]]:
    """Registry rows in the shape the UI technology picker reads."""
    return [
        {
            "id": tech.id,
            "name": tech.name,
            "keywords": display_keywords(tech.name_keywords),
            "category": tech.category,
        }
        for tech in registry
    ]


NAME_KEYWORDS = build_name_keywords()
CONTENT_PHRASES = build_content_phrases()
CONFIG_FILE_MAP = build_config_file_map()
PACKAGE_MAP = build_package_map()
PREFIX_PATTERNS = build_prefix_patterns()
ALIAS_MAP = build_alias_map()
TECHNOLOGY_IDS = frozenset(tech.id for tech in REGISTRY)
