"""
根据游戏名称列表查找对应的 Steam App ID，并生成可以直接导入 Notion 的 CSV。

    python find_app_ids.py input/gameNames.txt --platform "Epic Games"

完全同名的结果写入 steamAppIds_fullMatch.*，其余按字符串相似度取最接近的一个，
写入 steamAppIds_bestMatch.*（导入前建议手动检查一遍）。
"""
import os
import csv
import json
import logging
import argparse

from rapidfuzz import fuzz, process

from steam_fetcher import get_session

logger = logging.getLogger(__name__)

APP_LIST_URL = "https://api.steampowered.com/ISteamApps/GetAppList/v2/"
CSV_HEADER = ["Steam App ID", "Platform", "Status", "My Review"]
DEFAULT_STATUS = "Backlog"
DEFAULT_REVIEW = "Unreviewed"


def get_steam_apps(session):
    response = session.get(APP_LIST_URL, timeout=60)
    response.raise_for_status()
    return response.json().get("applist", {}).get("apps", [])


def read_game_names(path):
    names = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            name = line.strip()
            if name and name not in names:
                names.append(name)
    return names


def find_full_matches(game_names, steam_apps):
    """返回 (完全匹配 {名称: appid}, 未匹配的名称列表)"""
    by_name = {}
    for app in steam_apps:
        by_name.setdefault(app.get("name"), app.get("appid"))
    full, remaining = {}, []
    for name in game_names:
        if name in by_name:
            full[name] = by_name[name]
        else:
            remaining.append(name)
    return full, remaining


def find_best_matches(game_names, steam_apps):
    choices = [app.get("name", "") for app in steam_apps]
    best = {}
    for name in game_names:
        match = process.extractOne(name, choices, scorer=fuzz.ratio)
        if match is None:
            continue
        steam_name, score, index = match
        best[name] = {
            "appId": steam_apps[index].get("appid"),
            "similarity": round(score / 100, 3),
            "steamName": steam_name,
        }
    return best


def write_csv(path, app_ids, platform):
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for app_id in app_ids:
            writer.writerow([app_id, platform, DEFAULT_STATUS, DEFAULT_REVIEW])


def save_to_json(data, filename):
    with open(filename, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=4)
    logger.info(f"数据已保存到 {filename}")


def find_app_ids(input_file, output_dir, platform, session=None):
    session = session or get_session()
    os.makedirs(output_dir, exist_ok=True)

    logger.info("正在获取 Steam 游戏列表...")
    steam_apps = get_steam_apps(session)
    logger.info(f"共获取到 {len(steam_apps)} 个 Steam 应用。")

    game_names = read_game_names(input_file)
    logger.info(f"'{input_file}' 中共有 {len(game_names)} 个游戏名称。")

    full, remaining = find_full_matches(game_names, steam_apps)
    logger.info(f"完全匹配 {len(full)}/{len(game_names)} 个游戏。")
    save_to_json(full, os.path.join(output_dir, "steamAppIds_fullMatch.json"))
    write_csv(os.path.join(output_dir, "steamAppIds_fullMatch.csv"), full.values(), platform)

    best = find_best_matches(remaining, steam_apps)
    logger.info(f"剩余 {len(remaining)} 个游戏使用相似度匹配。")
    save_to_json(best, os.path.join(output_dir, "steamAppIds_bestMatch.json"))
    write_csv(
        os.path.join(output_dir, "steamAppIds_bestMatch.csv"),
        [match["appId"] for match in best.values()],
        platform,
    )
    return full, best


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(description="根据游戏名称查找 Steam App ID")
    parser.add_argument("input", nargs="?", default=os.path.join("input", "gameNames.txt"))
    parser.add_argument("--output", default="output")
    parser.add_argument("--platform", default="Epic Games", help="写入 CSV 的平台名称")
    args = parser.parse_args(argv)
    find_app_ids(args.input, args.output, args.platform)


if __name__ == "__main__":
    main()
